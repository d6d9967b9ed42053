"""
Flow Validator Service
Static analysis of a flow graph before it is activated.

The validator is pure: it reads an in-memory FlowData and returns a
ValidationResult. It never touches the database and never raises for a
malformed flow, every finding is accumulated instead.
"""
from collections import deque
from typing import Dict, List, Set

from models.flow_data import FlowData, FlowNode
from models.validation_data import ValidationIssue, ValidationResult


class FlowValidatorService:
    """
    Checks, in order:
    1. start node cardinality
    2. connection targets
    3. reachability from the start node
    4. presence of an end node
    5. per-type configuration completeness
    followed by structural hints carried over from the builder.
    """

    def validate(self, flow: FlowData) -> ValidationResult:
        errors: List[ValidationIssue] = []
        warnings: List[ValidationIssue] = []

        nodes_by_id = flow.nodes_by_id()

        self._check_unique_ids(flow, errors)
        self._check_start_nodes(flow, errors)
        self._check_connection_targets(flow, nodes_by_id, errors)
        self._check_reachability(flow, nodes_by_id, warnings)
        self._check_end_node(flow, warnings)
        for node in flow.nodes:
            errors.extend(self.validate_node_configuration(node))
            warnings.extend(self._connection_hints(node))
        self._check_loops(flow, nodes_by_id, warnings)

        return ValidationResult(
            is_valid=len(errors) == 0,
            errors=errors,
            warnings=warnings
        )

    def _check_unique_ids(self, flow: FlowData, errors: List[ValidationIssue]) -> None:
        seen_nodes: Set[str] = set()
        for node in flow.nodes:
            if node.id in seen_nodes:
                errors.append(ValidationIssue(
                    code="DUPLICATE_NODE_ID",
                    message=f"Node id {node.id} is used more than once",
                    node_id=node.id
                ))
            seen_nodes.add(node.id)

        seen_variables: Set[str] = set()
        for variable in flow.variables:
            if variable.name in seen_variables:
                errors.append(ValidationIssue(
                    code="DUPLICATE_VARIABLE_NAME",
                    message=f"Variable {variable.name} is declared more than once"
                ))
            seen_variables.add(variable.name)

    def _check_start_nodes(self, flow: FlowData, errors: List[ValidationIssue]) -> None:
        start_nodes = flow.start_nodes()
        if len(start_nodes) == 0:
            errors.append(ValidationIssue(
                code="MISSING_START_NODE",
                message="Flow must have exactly one start node"
            ))
        elif len(start_nodes) > 1:
            errors.append(ValidationIssue(
                code="MULTIPLE_START_NODES",
                message=f"Flow has {len(start_nodes)} start nodes, only one is allowed"
            ))

    def _check_connection_targets(self, flow: FlowData, nodes_by_id: Dict[str, FlowNode],
                                  errors: List[ValidationIssue]) -> None:
        for node in flow.nodes:
            for connection in node.connections:
                if connection.targetNodeId not in nodes_by_id:
                    errors.append(ValidationIssue(
                        code="INVALID_CONNECTION_TARGET",
                        message=f"Connection target node {connection.targetNodeId} does not exist",
                        node_id=node.id,
                        target_node_id=connection.targetNodeId
                    ))

    def _check_reachability(self, flow: FlowData, nodes_by_id: Dict[str, FlowNode],
                            warnings: List[ValidationIssue]) -> None:
        start_nodes = flow.start_nodes()
        if not start_nodes:
            return

        # Breadth-first walk from the first start node
        visited: Set[str] = {start_nodes[0].id}
        queue = deque([start_nodes[0].id])
        while queue:
            current = nodes_by_id.get(queue.popleft())
            if current is None:
                continue
            for connection in current.connections:
                target_id = connection.targetNodeId
                if target_id in nodes_by_id and target_id not in visited:
                    visited.add(target_id)
                    queue.append(target_id)

        for node in flow.nodes:
            if node.id not in visited:
                warnings.append(ValidationIssue(
                    code="UNREACHABLE_NODE",
                    message=f"Node {node.name or node.id} is not reachable from the start node",
                    node_id=node.id
                ))

    def _check_end_node(self, flow: FlowData, warnings: List[ValidationIssue]) -> None:
        if not any(node.type == "end" for node in flow.nodes):
            warnings.append(ValidationIssue(
                code="MISSING_END_NODE",
                message="Flow has no end node and will never complete a conversation"
            ))

    def validate_node_configuration(self, node: FlowNode) -> List[ValidationIssue]:
        """
        Required configuration per node type. Each missing field is its own error.
        """
        errors: List[ValidationIssue] = []
        config = node.configuration

        def _missing(code: str, message: str) -> None:
            errors.append(ValidationIssue(code=code, message=message, node_id=node.id))

        if node.type == "message":
            if not _has_text(config.messageText):
                _missing("MISSING_MESSAGE_TEXT", "Message text is required for message nodes")

        elif node.type == "question":
            if not _has_text(config.questionText):
                _missing("MISSING_QUESTION_TEXT", "Question text is required for question nodes")
            if not _has_text(config.variableName):
                _missing("MISSING_VARIABLE_NAME", "Variable name is required for question nodes")
            if config.inputType == "choice" and not config.choices:
                _missing("MISSING_CHOICES", "Choices are required for choice input type")

        elif node.type == "condition":
            if not config.conditions:
                _missing("MISSING_CONDITIONS", "Conditions are required for condition nodes")

        elif node.type == "action":
            if not _has_text(config.actionType):
                _missing("MISSING_ACTION_TYPE", "Action type is required for action nodes")

        elif node.type == "integration":
            if not _has_text(config.integrationType):
                _missing("MISSING_INTEGRATION_TYPE", "Integration type is required for integration nodes")

        return errors

    def _connection_hints(self, node: FlowNode) -> List[ValidationIssue]:
        warnings: List[ValidationIssue] = []
        if node.type == "start" and len(node.connections) == 0:
            warnings.append(ValidationIssue(
                code="START_NODE_NO_CONNECTIONS",
                message="Start node should have at least one connection",
                node_id=node.id
            ))
        elif node.type == "condition" and len(node.connections) < 2:
            warnings.append(ValidationIssue(
                code="CONDITION_NODE_INSUFFICIENT_CONNECTIONS",
                message="Condition node should have at least two connections (true/false paths)",
                node_id=node.id
            ))
        elif node.type == "end" and len(node.connections) > 0:
            warnings.append(ValidationIssue(
                code="END_NODE_HAS_CONNECTIONS",
                message="End node should not have outgoing connections",
                node_id=node.id
            ))
        return warnings

    def _check_loops(self, flow: FlowData, nodes_by_id: Dict[str, FlowNode],
                     warnings: List[ValidationIssue]) -> None:
        """
        A cycle is only a problem when it never stops for user input:
        question nodes break a cycle because they wait for the next message.
        Every node is used as a DFS root so cycles behind a question are found too.
        """
        visited: Set[str] = set()
        for root in flow.nodes:
            if root.id in visited:
                continue
            on_stack: Set[str] = {root.id}
            visited.add(root.id)
            # Iterative DFS: (node_id, index of the next connection to explore)
            stack = [(root.id, 0)]
            while stack:
                node_id, index = stack[-1]
                node = nodes_by_id.get(node_id)
                connections = node.connections if node is not None and node.type != "question" else []
                if index >= len(connections):
                    stack.pop()
                    on_stack.discard(node_id)
                    continue
                stack[-1] = (node_id, index + 1)
                target_id = connections[index].targetNodeId
                if target_id not in nodes_by_id:
                    continue
                if target_id in on_stack:
                    warnings.append(ValidationIssue(
                        code="POTENTIAL_INFINITE_LOOP",
                        message="Flow contains a cycle that never waits for user input",
                        node_id=target_id
                    ))
                    return
                if target_id not in visited:
                    visited.add(target_id)
                    on_stack.add(target_id)
                    stack.append((target_id, 0))


def _has_text(value) -> bool:
    return isinstance(value, str) and value.strip() != ""
