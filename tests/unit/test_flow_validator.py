import pytest

from services.flow_validator_service import FlowValidatorService
from models.flow_data import parse_flow_node

from flow_builders import build_flow, name_flow_nodes, age_flow_nodes


@pytest.fixture
def validator():
    return FlowValidatorService()


class TestFlowValidatorStructure:

    def test_complete_flow_is_valid(self, validator):
        result = validator.validate(build_flow(name_flow_nodes()))
        assert result.is_valid
        assert result.errors == []
        assert result.warnings == []

    def test_missing_start_node(self, validator):
        flow = build_flow([{"id": "end", "type": "end"}])
        result = validator.validate(flow)
        assert not result.is_valid
        assert result.error_codes() == ["MISSING_START_NODE"]

    def test_multiple_start_nodes(self, validator):
        flow = build_flow([
            {"id": "s1", "type": "start", "connections": [{"targetNodeId": "end"}]},
            {"id": "s2", "type": "start", "connections": [{"targetNodeId": "end"}]},
            {"id": "end", "type": "end"},
        ])
        result = validator.validate(flow)
        assert "MULTIPLE_START_NODES" in result.error_codes()
        assert flow.entry_node_id is None

    def test_invalid_connection_target_names_source_and_target(self, validator):
        flow = build_flow([
            {"id": "start", "type": "start", "connections": [{"targetNodeId": "ghost"}]},
            {"id": "end", "type": "end"},
        ])
        result = validator.validate(flow)
        issue = next(issue for issue in result.errors if issue.code == "INVALID_CONNECTION_TARGET")
        assert issue.node_id == "start"
        assert issue.target_node_id == "ghost"

    def test_unreachable_node_reported_only_for_isolated_node(self, validator):
        """start -> A -> B with an isolated C: only C is unreachable."""
        flow = build_flow([
            {"id": "start", "type": "start", "connections": [{"targetNodeId": "A"}]},
            {"id": "A", "type": "message", "configuration": {"messageText": "a"}, "connections": [{"targetNodeId": "B"}]},
            {"id": "B", "type": "end"},
            {"id": "C", "type": "message", "configuration": {"messageText": "c"}},
        ])
        result = validator.validate(flow)
        unreachable = [issue.node_id for issue in result.warnings if issue.code == "UNREACHABLE_NODE"]
        assert unreachable == ["C"]
        assert result.is_valid

    def test_missing_end_node_is_a_warning(self, validator):
        flow = build_flow([
            {"id": "start", "type": "start", "connections": [{"targetNodeId": "A"}]},
            {"id": "A", "type": "message", "configuration": {"messageText": "a"}},
        ])
        result = validator.validate(flow)
        assert result.is_valid
        assert "MISSING_END_NODE" in result.warning_codes()

    def test_duplicate_node_and_variable(self, validator):
        flow = build_flow(
            [
                {"id": "start", "type": "start", "connections": [{"targetNodeId": "end"}]},
                {"id": "end", "type": "end"},
                {"id": "end", "type": "end"},
            ],
            variables=[{"name": "age"}, {"name": "age"}]
        )
        codes = validator.validate(flow).error_codes()
        assert "DUPLICATE_NODE_ID" in codes
        assert "DUPLICATE_VARIABLE_NAME" in codes

    def test_connection_hints(self, validator):
        flow = build_flow([
            {"id": "start", "type": "start"},
            {
                "id": "cond",
                "type": "condition",
                "configuration": {"conditions": [{"variable": "x", "operator": "exists"}]},
                "connections": [{"targetNodeId": "end", "label": "true"}]
            },
            {"id": "end", "type": "end", "connections": [{"targetNodeId": "start"}]},
        ])
        codes = validator.validate(flow).warning_codes()
        assert "START_NODE_NO_CONNECTIONS" in codes
        assert "CONDITION_NODE_INSUFFICIENT_CONNECTIONS" in codes
        assert "END_NODE_HAS_CONNECTIONS" in codes

    def test_cycle_without_question_is_flagged(self, validator):
        flow = build_flow([
            {"id": "start", "type": "start", "connections": [{"targetNodeId": "A"}]},
            {"id": "A", "type": "message", "configuration": {"messageText": "a"}, "connections": [{"targetNodeId": "B"}]},
            {"id": "B", "type": "message", "configuration": {"messageText": "b"}, "connections": [{"targetNodeId": "A"}]},
        ])
        assert "POTENTIAL_INFINITE_LOOP" in validator.validate(flow).warning_codes()

    def test_cycle_through_question_is_not_flagged(self, validator):
        flow = build_flow([
            {"id": "start", "type": "start", "connections": [{"targetNodeId": "Q"}]},
            {
                "id": "Q",
                "type": "question",
                "configuration": {"questionText": "again?", "variableName": "again"},
                "connections": [{"targetNodeId": "A"}]
            },
            {"id": "A", "type": "message", "configuration": {"messageText": "a"}, "connections": [{"targetNodeId": "Q"}]},
        ])
        assert "POTENTIAL_INFINITE_LOOP" not in validator.validate(flow).warning_codes()

    def test_age_flow_is_valid(self, validator):
        assert validator.validate(build_flow(age_flow_nodes())).is_valid


class TestNodeConfigurationCompleteness:

    @pytest.mark.parametrize("node, expected_codes", [
        ({"id": "n", "type": "message"}, ["MISSING_MESSAGE_TEXT"]),
        ({"id": "n", "type": "message", "configuration": {"messageText": "   "}}, ["MISSING_MESSAGE_TEXT"]),
        ({"id": "n", "type": "question"}, ["MISSING_QUESTION_TEXT", "MISSING_VARIABLE_NAME"]),
        ({"id": "n", "type": "question", "configuration": {"questionText": "Pick", "variableName": "v", "inputType": "choice"}},
         ["MISSING_CHOICES"]),
        ({"id": "n", "type": "condition"}, ["MISSING_CONDITIONS"]),
        ({"id": "n", "type": "action"}, ["MISSING_ACTION_TYPE"]),
        ({"id": "n", "type": "integration"}, ["MISSING_INTEGRATION_TYPE"]),
        ({"id": "n", "type": "start"}, []),
        ({"id": "n", "type": "end"}, []),
    ])
    def test_missing_fields(self, validator, node, expected_codes):
        issues = validator.validate_node_configuration(parse_flow_node(node))
        assert [issue.code for issue in issues] == expected_codes
        assert all(issue.node_id == "n" for issue in issues)

    @pytest.mark.parametrize("node", [
        {"id": "n", "type": "message", "configuration": {"messageText": "Hello"}},
        {"id": "n", "type": "question", "configuration": {
            "questionText": "Pick", "variableName": "v", "inputType": "choice",
            "choices": [{"value": "a", "label": "A"}]
        }},
        {"id": "n", "type": "condition", "configuration": {"conditions": [{"variable": "v", "operator": "exists"}]}},
        {"id": "n", "type": "action", "configuration": {"actionType": "set_variable"}},
        {"id": "n", "type": "integration", "configuration": {"integrationType": "webhook"}},
    ])
    def test_populated_configuration_has_no_error(self, validator, node):
        assert validator.validate_node_configuration(parse_flow_node(node)) == []
