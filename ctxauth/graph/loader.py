"""
Load role and tenant definitions from dictionaries or JSON/YAML files.

Capabilities are parsed here, at load time, so a malformed capability or an
unknown capability kind is a configuration error before any decision runs.

Accepted shapes::

    roles:
      viewer:
        capabilities: ["read:report"]
      editor:
        capabilities: ["write:report"]
        parents: [viewer]
    tenants:
      - id: contextA
        domain_whitelist: [company.com]
        sso_enabled: true
        inheritance_enabled: true

``roles`` may also be a list of mappings carrying ``role_id``.
"""

import logging
from typing import Any, Dict, List, Tuple

from ..errors import ConfigurationError
from ..types import CorporateContext, PermissionNode, parse_capabilities
from ..util.config import load_config_file


logger = logging.getLogger(__name__)


def _entries(section: Any, id_key: str) -> List[Dict[str, Any]]:
    if section is None:
        return []
    if isinstance(section, dict):
        return [dict(body or {}, **{id_key: key}) for key, body in section.items()]
    if isinstance(section, list):
        return [dict(item) for item in section]
    raise ConfigurationError(f"Expected a mapping or list, got {type(section).__name__}")


def load_role_nodes(data: Dict[str, Any]) -> List[PermissionNode]:
    """Build permission nodes from the ``roles`` section of a policy document."""
    nodes = []
    for entry in _entries(data.get("roles"), "role_id"):
        role_id = entry.get("role_id") or entry.get("id")
        if not role_id:
            raise ConfigurationError("Role definition without role_id")
        try:
            capabilities = parse_capabilities(entry.get("capabilities", []))
        except ValueError as e:
            raise ConfigurationError(f"Role {role_id}: {e}", cause=e) from e
        nodes.append(PermissionNode(
            role_id=role_id,
            capabilities=capabilities,
            parents=frozenset(entry.get("parents", [])),
        ))
    return nodes


def load_tenants(data: Dict[str, Any]) -> List[CorporateContext]:
    """Build corporate contexts from the ``tenants`` section of a policy document."""
    tenants = []
    for entry in _entries(data.get("tenants"), "id"):
        if not entry.get("id"):
            raise ConfigurationError("Tenant definition without id")
        tenants.append(CorporateContext.from_dict(entry))
    return tenants


def load_policy_file(file_path: str) -> Tuple[List[PermissionNode], List[CorporateContext]]:
    """Load roles and tenants from a JSON or YAML file."""
    data = load_config_file(file_path)
    nodes, tenants = load_role_nodes(data), load_tenants(data)
    logger.info(f"Loaded {len(nodes)} roles and {len(tenants)} tenants from {file_path}")
    return nodes, tenants
