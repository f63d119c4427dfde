"""
Permission graph package for ctxauth.
"""

from .permission_graph import PermissionGraph, detect_cycles
from .loader import load_role_nodes, load_tenants, load_policy_file

__all__ = [
    "PermissionGraph",
    "detect_cycles",
    "load_role_nodes",
    "load_tenants",
    "load_policy_file",
]
