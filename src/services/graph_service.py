"""Structural checks for workflow definition graphs."""

import logging

from models.definition import NodeType, WorkflowDefinitionInput


class GraphService:
    """Validates the node/edge graph of a workflow definition."""

    def __init__(self):
        self.logger = logging.getLogger(__name__)

    def validate(self, definition: WorkflowDefinitionInput) -> None:
        """Validate the graph, raising ValueError on the first broken rule."""
        if definition is None:
            raise ValueError("definition is required")

        node_ids = {node.id for node in definition.nodes}

        start_nodes = [n for n in definition.nodes if n.type == NodeType.START.value]
        if len(start_nodes) != 1:
            raise ValueError(
                f"Definition must have exactly one START node, found {len(start_nodes)}"
            )

        for edge in definition.edges:
            if edge.source not in node_ids:
                raise ValueError(f"Edge source not found: {edge.source}")
            if edge.target not in node_ids:
                raise ValueError(f"Edge target not found: {edge.target}")

        for node in definition.nodes:
            if node.type != NodeType.CONDITION.value:
                continue
            branches = node.config.get("branches") or {}
            if not isinstance(branches, dict):
                raise ValueError(f"CONDITION node {node.id}: branches must be a mapping")
            targets = list(branches.values())
            if node.config.get("default"):
                targets.append(node.config["default"])
            for target in targets:
                if target and target not in node_ids:
                    raise ValueError(
                        f"CONDITION node {node.id}: branch target not found: {target}"
                    )

        unreachable = node_ids - self.reachable_from(definition, start_nodes[0].id)
        if unreachable:
            self.logger.warning(
                f"Unreachable nodes in {definition.name}: {sorted(unreachable)}"
            )

        self.logger.debug(f"Definition graph validated: {definition.name}")

    def reachable_from(
        self, definition: WorkflowDefinitionInput, node_id: str
    ) -> set[str]:
        """Node ids reachable from node_id through edges and CONDITION branches."""
        successors: dict[str, set[str]] = {node.id: set() for node in definition.nodes}
        for edge in definition.edges:
            successors[edge.source].add(edge.target)
        for node in definition.nodes:
            if node.type == NodeType.CONDITION.value:
                for target in (node.config.get("branches") or {}).values():
                    if target in successors:
                        successors[node.id].add(target)
                default = node.config.get("default")
                if default in successors:
                    successors[node.id].add(default)

        reachable: set[str] = set()
        stack = [node_id]
        while stack:
            current = stack.pop()
            if current in reachable:
                continue
            reachable.add(current)
            stack.extend(successors.get(current, ()))
        return reachable
