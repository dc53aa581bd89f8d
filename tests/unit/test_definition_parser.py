"""Unit tests for DefinitionParser and GraphService."""

import json
import logging

import pytest

from models.definition import WorkflowDefinitionInput
from services.definition_parser import DefinitionParseError, DefinitionParser
from services.errors import ValidationError
from services.graph_service import GraphService


def onboarding_definition() -> dict:
    """Customer onboarding graph with a condition branch."""
    return {
        "name": "customer-onboarding",
        "description": "Collect KYC and welcome the customer",
        "nodes": [
            {"id": "start", "type": "START"},
            {
                "id": "check_tier",
                "type": "condition",
                "config": {
                    "conditions": [
                        {"field": "customer.tier", "operator": "equals", "value": "GOLD"}
                    ],
                    "branches": {"true": "welcome_vip", "false": "welcome"},
                },
            },
            {"id": "welcome_vip", "type": "SEND_EMAIL", "config": {"to": "{{customer.email}}"}},
            {"id": "welcome", "type": "SEND_EMAIL", "config": {"to": "{{customer.email}}"}},
            {"id": "end", "type": "END"},
        ],
        "edges": [
            {"source": "start", "target": "check_tier"},
            {"source": "welcome_vip", "target": "end"},
            {"source": "welcome", "target": "end"},
        ],
        "triggers": [{"type": "CUSTOMER_CREATED"}],
        "slaConfig": {"resolutionTimeMinutes": 240},
    }


@pytest.fixture
def parser():
    return DefinitionParser()


class TestParseJson:
    """Tests for parsing definition dicts."""

    def test_parses_valid_definition(self, parser):
        definition = parser.parse_json(onboarding_definition())

        assert isinstance(definition, WorkflowDefinitionInput)
        assert definition.name == "customer-onboarding"
        assert len(definition.nodes) == 5
        assert definition.nodes[1].type == "CONDITION"
        assert definition.sla_config.resolution_time_minutes == 240
        assert definition.triggers[0].type == "CUSTOMER_CREATED"

    def test_edge_condition_dict_becomes_list(self, parser):
        data = onboarding_definition()
        data["edges"][0]["condition"] = {
            "field": "customer.active",
            "operator": "equals",
            "value": True,
        }
        definition = parser.parse_json(data)
        assert len(definition.edges[0].condition) == 1

    def test_none_raises(self, parser):
        with pytest.raises(ValueError, match="data is required"):
            parser.parse_json(None)

    def test_missing_nodes(self, parser):
        with pytest.raises(DefinitionParseError, match="Invalid definition structure"):
            parser.parse_json({"name": "x"})

    def test_parse_error_is_validation_error(self, parser):
        with pytest.raises(ValidationError):
            parser.parse_json({"name": "x", "nodes": []})

    def test_duplicate_node_ids(self, parser):
        data = onboarding_definition()
        data["nodes"].append({"id": "end", "type": "END"})
        with pytest.raises(DefinitionParseError, match="Duplicate node id"):
            parser.parse_json(data)

    def test_edge_to_unknown_node(self, parser):
        data = onboarding_definition()
        data["edges"].append({"source": "welcome", "target": "nowhere"})
        with pytest.raises(DefinitionParseError, match="Edge target not found"):
            parser.parse_json(data)

    def test_requires_one_start_node(self, parser):
        data = onboarding_definition()
        data["nodes"][0]["type"] = "END"
        with pytest.raises(DefinitionParseError, match="exactly one START"):
            parser.parse_json(data)

    def test_condition_branch_target_must_exist(self, parser):
        data = onboarding_definition()
        data["nodes"][1]["config"]["branches"]["false"] = "ghost"
        with pytest.raises(DefinitionParseError, match="branch target not found: ghost"):
            parser.parse_json(data)

    def test_condition_branches_must_be_mapping(self, parser):
        data = onboarding_definition()
        data["nodes"][1]["config"]["branches"] = ["welcome"]
        with pytest.raises(DefinitionParseError, match="branches must be a mapping"):
            parser.parse_json(data)

    def test_invalid_sla(self, parser):
        data = onboarding_definition()
        data["slaConfig"] = {"resolutionTimeMinutes": 0}
        with pytest.raises(DefinitionParseError):
            parser.parse_json(data)


class TestParseFile:
    """Tests for parsing definition files."""

    def test_parse_file(self, parser, tmp_path):
        path = tmp_path / "definition.json"
        path.write_text(json.dumps(onboarding_definition()))

        definition = parser.parse_file(str(path))
        assert definition.name == "customer-onboarding"

    def test_missing_file(self, parser, tmp_path):
        with pytest.raises(FileNotFoundError):
            parser.parse_file(str(tmp_path / "missing.json"))

    def test_invalid_json(self, parser, tmp_path):
        path = tmp_path / "broken.json"
        path.write_text("{not json")
        with pytest.raises(DefinitionParseError, match="Invalid JSON"):
            parser.parse_file(str(path))


class TestGraphService:
    """Tests for graph reachability."""

    def test_reachable_follows_branches(self):
        definition = WorkflowDefinitionInput.model_validate(onboarding_definition())
        reachable = GraphService().reachable_from(definition, "start")
        assert reachable == {"start", "check_tier", "welcome_vip", "welcome", "end"}

    def test_unreachable_nodes_warn(self, caplog):
        data = onboarding_definition()
        data["nodes"].append({"id": "orphan", "type": "CREATE_TASK"})
        definition = WorkflowDefinitionInput.model_validate(data)

        with caplog.at_level(logging.WARNING):
            GraphService().validate(definition)

        assert "orphan" in caplog.text
