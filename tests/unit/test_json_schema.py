"""Unit tests for JSON Schema helpers."""

import pytest

from services.errors import ValidationError
from services.json_schema import check_schema, form_to_json_schema, validation_errors

KYC_FORM = {
    "fields": [
        {"name": "company_name", "type": "text", "required": True},
        {"name": "email", "type": "email", "required": True},
        {"name": "employees", "type": "number", "validation": {"min": 1, "max": 100000}},
        {
            "name": "incoterm",
            "type": "select",
            "validation": {"options": ["FOB", "CIF", "DAP"]},
        },
        {"name": "hazmat", "type": "checkbox"},
    ]
}


class TestFormToJsonSchema:
    """Tests for form definition conversion."""

    def test_converts_fields(self):
        schema = form_to_json_schema(KYC_FORM)

        assert schema["type"] == "object"
        assert schema["required"] == ["company_name", "email"]
        assert schema["properties"]["employees"] == {
            "type": "number",
            "minimum": 1,
            "maximum": 100000,
        }
        assert schema["properties"]["incoterm"]["enum"] == ["FOB", "CIF", "DAP"]
        assert schema["properties"]["hazmat"] == {"type": "boolean"}

    def test_empty_form(self):
        assert form_to_json_schema({}) == {"type": "object"}
        assert form_to_json_schema(None) == {"type": "object"}

    def test_json_schema_passthrough(self):
        schema = {"type": "object", "required": ["x"]}
        assert form_to_json_schema(schema) is schema

    def test_field_without_name(self):
        with pytest.raises(ValidationError, match="without a name"):
            form_to_json_schema({"fields": [{"type": "text"}]})


class TestValidationErrors:
    """Tests for data validation."""

    def test_valid_data(self):
        data = {"company_name": "Acme Freight", "email": "ops@acme.io", "employees": 40}
        assert validation_errors(form_to_json_schema(KYC_FORM), data) == []

    def test_missing_required(self):
        errors = validation_errors(form_to_json_schema(KYC_FORM), {"email": "a@b.com"})
        assert errors == ["'company_name' is a required property"]

    def test_field_errors_carry_location(self):
        data = {"company_name": "Acme", "email": "a@b.com", "employees": 0, "incoterm": "EXW"}
        errors = validation_errors(form_to_json_schema(KYC_FORM), data)

        assert len(errors) == 2
        assert errors[0].startswith("employees: ")
        assert errors[1].startswith("incoterm: ")

    def test_invalid_schema(self):
        with pytest.raises(ValidationError, match="Invalid JSON Schema"):
            check_schema({"type": "not-a-type"})
