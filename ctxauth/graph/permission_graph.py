"""
Role inheritance graph and effective capability resolution.

Copyright (c) 2025 Gimel Foundation and the persons identified as the document authors.
All rights reserved. This file is subject to the Gimel Foundation's Legal Provisions Relating to GiFo Documents.
See http://GimelFoundation.com or https://github.com/Gimel-Foundation for details.
Code Components extracted from GiFo-RfC 0111 must include this license text and are provided without warranty.

Cycle detection is an explicit pass at construction time. Roles that sit on
a cycle are either rejected outright (strict mode) or logged and excluded
from every capability union. Resolution additionally keeps a visited set so
it terminates even on a graph that was mutated after validation.
"""

import logging
from typing import Dict, FrozenSet, Iterable, List, Set

from ..errors import ConfigurationError, CyclicRoleGraphError, UnknownRoleError
from ..types import Capability, CorporateContext, PermissionNode, Principal


logger = logging.getLogger(__name__)


def detect_cycles(nodes: Dict[str, PermissionNode]) -> List[List[str]]:
    """
    Find every cyclic component of the role graph.

    Uses Tarjan's strongly connected components algorithm over roles and
    parents visited in sorted order, so the result is deterministic. Each
    component is returned as a sorted list of role ids; components are
    sorted by their first member. A role that lists itself as a parent is a
    component of one.
    """
    index_of: Dict[str, int] = {}
    lowlink: Dict[str, int] = {}
    on_stack: Set[str] = set()
    stack: List[str] = []
    cycles: List[List[str]] = []
    counter = 0

    for root in sorted(nodes):
        if root in index_of:
            continue

        # Iterative Tarjan: each frame is (role, iterator over its parents)
        work = [(root, iter(sorted(p for p in nodes[root].parents if p in nodes)))]
        index_of[root] = lowlink[root] = counter
        counter += 1
        stack.append(root)
        on_stack.add(root)

        while work:
            role, parents = work[-1]
            advanced = False
            for parent in parents:
                if parent not in index_of:
                    index_of[parent] = lowlink[parent] = counter
                    counter += 1
                    stack.append(parent)
                    on_stack.add(parent)
                    work.append((parent, iter(sorted(p for p in nodes[parent].parents if p in nodes))))
                    advanced = True
                    break
                if parent in on_stack:
                    lowlink[role] = min(lowlink[role], index_of[parent])
            if advanced:
                continue

            work.pop()
            if work:
                caller = work[-1][0]
                lowlink[caller] = min(lowlink[caller], lowlink[role])

            if lowlink[role] == index_of[role]:
                component = []
                while True:
                    member = stack.pop()
                    on_stack.discard(member)
                    component.append(member)
                    if member == role:
                        break
                if len(component) > 1 or role in nodes[role].parents:
                    cycles.append(sorted(component))

    return sorted(cycles)


class PermissionGraph:
    """
    Resolves a principal's effective role capabilities.

    Capabilities merge by union only; no role can take away a capability
    another assigned role grants.
    """

    def __init__(self, nodes: Iterable[PermissionNode], strict: bool = False):
        """
        Build and validate the graph.

        Args:
            nodes: Role definitions
            strict: Raise ``CyclicRoleGraphError`` instead of excluding cyclic roles

        Raises:
            ConfigurationError: On duplicate role ids
            UnknownRoleError: When a parent reference does not resolve
            CyclicRoleGraphError: In strict mode, when any cycle exists
        """
        self._nodes: Dict[str, PermissionNode] = {}
        for node in nodes:
            if node.role_id in self._nodes:
                raise ConfigurationError(f"Duplicate role definition: {node.role_id}")
            self._nodes[node.role_id] = node

        for role_id in sorted(self._nodes):
            for parent in sorted(self._nodes[role_id].parents):
                if parent not in self._nodes:
                    raise UnknownRoleError(parent, f"Role {role_id} inherits from unknown role {parent}")

        self.cycles = detect_cycles(self._nodes)
        self._excluded: FrozenSet[str] = frozenset(r for c in self.cycles for r in c)

        if self.cycles:
            error = CyclicRoleGraphError(self.cycles)
            if strict:
                raise error
            logger.error(f"{error.message}; excluding roles {sorted(self._excluded)}")

        logger.debug(f"Permission graph built with {len(self._nodes)} roles")

    @property
    def excluded_roles(self) -> FrozenSet[str]:
        """Roles dropped from resolution because they sit on a cycle."""
        return self._excluded

    def __contains__(self, role_id: str) -> bool:
        return role_id in self._nodes

    def __len__(self) -> int:
        return len(self._nodes)

    def validate_roles(self, role_ids: Iterable[str]) -> None:
        """Raise ``UnknownRoleError`` for the first unknown role id."""
        for role_id in sorted(role_ids):
            if role_id not in self._nodes:
                raise UnknownRoleError(role_id)

    def resolve(
        self,
        principal: Principal,
        context: CorporateContext,
        inheritance_enabled: bool = True,
    ) -> FrozenSet[Capability]:
        """
        Compute the capabilities a principal's roles grant in a context.

        Parents are only traversed when both the context and the deployment
        enable inheritance; otherwise only directly assigned roles count.

        Raises:
            UnknownRoleError: If the principal holds a role that does not exist
        """
        traverse = inheritance_enabled and context.inheritance_enabled
        capabilities: Set[Capability] = set()
        visited: Set[str] = set()

        for assigned in sorted(principal.roles):
            if assigned not in self._nodes:
                raise UnknownRoleError(assigned)

            pending = [assigned]
            while pending:
                role_id = pending.pop()
                if role_id in visited:
                    continue
                visited.add(role_id)

                if role_id in self._excluded:
                    logger.warning(f"Skipping cyclic role {role_id} while resolving {principal.id}")
                    continue

                node = self._nodes[role_id]
                capabilities.update(node.capabilities)
                if traverse:
                    pending.extend(sorted(node.parents, reverse=True))

        return frozenset(capabilities)
