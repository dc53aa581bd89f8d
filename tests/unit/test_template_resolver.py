"""Unit tests for template resolution."""

from services.template_resolver import (
    MISSING,
    find_unresolved,
    resolve_path,
    resolve_template,
    resolve_value,
    stringify,
)


class TestResolvePath:
    """Tests for dotted path lookup."""

    def test_nested_dict(self):
        assert resolve_path({"a": {"b": {"c": 1}}}, "a.b.c") == 1

    def test_list_index(self):
        context = {"items": [{"sku": "X1"}, {"sku": "X2"}]}
        assert resolve_path(context, "items.1.sku") == "X2"

    def test_missing_key(self):
        assert resolve_path({"a": {}}, "a.b") is MISSING

    def test_index_out_of_range(self):
        assert resolve_path({"items": []}, "items.0") is MISSING

    def test_through_scalar(self):
        assert resolve_path({"a": 5}, "a.b") is MISSING

    def test_none_value_is_not_missing(self):
        assert resolve_path({"a": None}, "a") is None

    def test_empty_path(self):
        assert resolve_path({"a": 1}, "") is MISSING


class TestResolveTemplate:
    """Tests for string template substitution."""

    def test_replaces_token(self):
        context = {"customer": {"email": "a@b.com"}}
        assert resolve_template("{{customer.email}}", context) == "a@b.com"

    def test_missing_token_left_verbatim(self):
        context = {"customer": {"email": "a@b.com"}}
        assert resolve_template("{{customer.phone}}", context) == "{{customer.phone}}"

    def test_mixed_text(self):
        context = {"shipment": {"id": "SH-1", "weight": 12.5}}
        result = resolve_template(
            "Shipment {{shipment.id}} weighs {{ shipment.weight }} kg", context
        )
        assert result == "Shipment SH-1 weighs 12.5 kg"

    def test_partial_resolution(self):
        result = resolve_template("{{a}} and {{b}}", {"a": "x"})
        assert result == "x and {{b}}"

    def test_dict_value_rendered_as_json(self):
        assert resolve_template("data={{d}}", {"d": {"k": 1}}) == 'data={"k": 1}'

    def test_non_string_passthrough(self):
        assert resolve_template(42, {}) == 42


class TestResolveValue:
    """Tests for config value resolution."""

    def test_single_placeholder_keeps_type(self):
        context = {"order": {"items": [1, 2]}}
        assert resolve_value("{{order.items}}", context) == [1, 2]

    def test_single_placeholder_missing_kept(self):
        assert resolve_value("{{order.total}}", {}) == "{{order.total}}"

    def test_nested_structures(self):
        context = {"customer": {"id": "C-9", "name": "Acme"}}
        value = {
            "customerId": "{{customer.id}}",
            "tags": ["{{customer.name}}", "static"],
            "count": 3,
        }
        assert resolve_value(value, context) == {
            "customerId": "C-9",
            "tags": ["Acme", "static"],
            "count": 3,
        }


class TestFindUnresolved:
    """Tests for leftover placeholder detection."""

    def test_finds_in_nested_values(self):
        value = {"to": "{{customer.email}}", "cc": ["{{manager.email}}", "ops@x.io"]}
        assert sorted(find_unresolved(value)) == ["customer.email", "manager.email"]

    def test_none_when_resolved(self):
        assert find_unresolved({"to": "ops@x.io", "n": 1}) == []


class TestStringify:
    def test_values(self):
        assert stringify("x") == "x"
        assert stringify(3) == "3"
        assert stringify(True) == "true"
        assert stringify(None) == "null"
        assert stringify([1, "a"]) == '[1, "a"]'
