"""Tests for the output validator: SQL, n8n workflows, Form.io forms."""
import json

import pytest

from codegen_rag.schemas import OutputType
from codegen_rag.validation.checks import strip_sql_comments
from codegen_rag.validation.structures import OutputParseError, parse_form, parse_workflow
from codegen_rag.validation.validator import validate_output


def _node(name, **extra):
    node = {"name": name, "type": "n8n-nodes-base.set", "position": [0, 0], "parameters": {}}
    node.update(extra)
    return node


def _component(key, type_="textfield", **extra):
    comp = {"type": type_, "key": key, "label": key.title()}
    comp.update(extra)
    return comp


SUBMIT = {"type": "button", "key": "submit", "action": "submit"}


class TestSQL:

    def test_empty_is_invalid(self):
        result = validate_output("", "sql")
        assert not result.is_valid
        assert result.errors == ["Generated SQL is empty"]

    def test_simple_select_is_valid(self):
        result = validate_output("SELECT * FROM users", "sql")
        assert result.is_valid
        assert result.errors == []

    def test_select_without_from(self):
        result = validate_output("SELECT * WHERE x=1", "sql")
        assert not result.is_valid
        assert "SELECT statement missing FROM clause" in result.errors

    def test_unbalanced_parentheses(self):
        result = validate_output("SELECT (1", "sql")
        assert not result.is_valid
        assert "Unbalanced parentheses in SQL query" in result.errors

    @pytest.mark.parametrize("sql", ["SELECT 1", "select 'ok';", "SELECT NULL", "SELECT -2.5"])
    def test_literal_select_needs_no_from(self, sql):
        assert validate_output(sql, "sql").is_valid

    def test_not_sql(self):
        result = validate_output("Here is your query, enjoy!", "sql")
        assert "Generated code does not appear to be valid SQL" in result.errors

    def test_unterminated_string(self):
        result = validate_output("SELECT * FROM users WHERE name = 'bob", "sql")
        assert "Unterminated string literal in SQL query" in result.errors

    def test_escaped_quotes_are_balanced(self):
        assert validate_output("SELECT * FROM users WHERE name = 'O''Brien'", "sql").is_valid

    def test_comments_are_ignored(self):
        sql = (
            "-- customer's orders (latest first\n"
            "SELECT id, total /* don't ( */ FROM orders ORDER BY id DESC;"
        )
        assert validate_output(sql, "sql").is_valid

    def test_comment_markers_inside_literals_survive(self):
        assert strip_sql_comments("SELECT '--x' FROM t -- note") == "SELECT '--x' FROM t  "

    def test_template_syntax_is_only_a_suggestion(self):
        result = validate_output("SELECT * FROM users WHERE id = ${userId}", "sql")
        assert result.is_valid
        assert any("template literals" in s for s in result.suggestions)

    def test_idempotent(self):
        code = "SELECT * WHERE (x = 'a"
        assert validate_output(code, OutputType.SQL) == validate_output(code, OutputType.SQL)


class TestN8nWorkflow:

    def test_no_nodes_is_invalid(self):
        result = validate_output('{"nodes": [], "connections": {}}', "n8n")
        assert not result.is_valid
        assert "n8n workflow must contain at least one node" in result.errors

    def test_single_node_has_no_isolation_suggestion(self):
        code = '{"nodes":[{"name":"A","type":"t","position":{"x":0,"y":0}}], "connections":{}}'
        result = validate_output(code, "n8n")
        assert result.is_valid
        assert not any("isolated" in s for s in result.suggestions)
        assert 'Node "A" has no parameters - verify this is intentional' in result.suggestions

    def test_isolated_node_flagged_when_several_nodes(self):
        workflow = {
            "nodes": [_node("Webhook"), _node("Set"), _node("Orphan")],
            "connections": {"Webhook": {"main": [[{"node": "Set", "type": "main", "index": 0}]]}},
        }
        result = validate_output(json.dumps(workflow), "n8n")
        assert result.is_valid
        assert result.suggestions == ['Node "Orphan" appears to be isolated (no connections)']

    def test_missing_structure(self):
        result = validate_output('{"nodes": [{"parameters": {}}]}', "n8n")
        assert not result.is_valid
        assert result.errors == [
            'n8n workflow must contain a "connections" object',
            'Node at index 0 is missing a "name" property',
            'Node at index 0 is missing a "type" property',
            'Node at index 0 is missing valid "position" coordinates',
        ]

    def test_nodes_must_be_array(self):
        result = validate_output('{"nodes": {}, "connections": {}}', "n8n")
        assert result.errors == ['n8n workflow must contain a "nodes" array']

    def test_invalid_json_short_circuits(self):
        result = validate_output("```json\n{nodes: }\n```", "n8n")
        assert not result.is_valid
        assert len(result.errors) == 1
        assert result.errors[0].startswith("Invalid JSON: ")
        assert result.suggestions == ["Ensure the generated code is valid JSON format"]

    def test_deeply_nested_output_is_reported_not_raised(self):
        result = validate_output("[" * 100000 + "]" * 100000, "n8n")
        assert not result.is_valid
        assert result.errors[0].startswith("Invalid JSON: ")

    def test_parse_collects_connection_targets(self):
        workflow = parse_workflow(json.dumps({
            "nodes": [_node("A"), _node("B"), _node("C")],
            "connections": {"A": {"main": [[{"node": "B"}], [{"node": "C"}]]}},
        }))
        assert workflow.connections == {"A": ["B", "C"]}
        assert workflow.connected_names() == {"A", "B", "C"}


class TestFormio:

    def test_duplicate_keys(self):
        form = {"components": [_component("email", "email"), _component("email", "email"), SUBMIT]}
        result = validate_output(json.dumps(form), "formio")
        assert not result.is_valid
        assert 'Duplicate component key found: "email"' in result.errors

    def test_well_formed_form_is_clean(self):
        form = {"components": [_component("firstName"), _component("email", "email"), SUBMIT]}
        result = validate_output(json.dumps(form), "formio")
        assert result.is_valid
        assert result.suggestions == []

    def test_empty_components(self):
        result = validate_output('{"components": []}', "formio")
        assert result.errors == ["Form.io form must contain at least one component"]

    def test_missing_components_array(self):
        result = validate_output('{"display": "form"}', "formio")
        assert result.errors == ['Form.io form must contain a "components" array']

    def test_invalid_key_and_missing_type(self):
        form = {"components": [{"key": "first-name", "label": "First"}, SUBMIT]}
        result = validate_output(json.dumps(form), "formio")
        assert result.errors == [
            'Component at index 0 is missing a "type" property',
            'Component key "first-name" contains invalid characters',
        ]

    def test_soft_suggestions(self):
        form = {
            "components": [
                {"type": "select", "key": "country", "label": "Country"},
                {"type": "textfield", "key": "nickname", "validate": {"required": True}},
            ]
        }
        result = validate_output(json.dumps(form), "formio")
        assert result.is_valid
        assert result.suggestions == [
            'Component "country" of type "select" should have data.values defined',
            'Component "nickname" is missing a "label" property',
            'Required component "nickname" should have a label',
            "Form does not contain a submit button",
        ]

    def test_button_without_action_counts_as_submit(self):
        form = {"components": [_component("name"), {"type": "button", "key": "go", "label": "Go"}]}
        assert validate_output(json.dumps(form), "formio").suggestions == []

    def test_parse_form_rejects_bad_json(self):
        with pytest.raises(OutputParseError):
            parse_form("{'components': []}")

    def test_deeply_nested_form_is_a_parse_error(self):
        with pytest.raises(OutputParseError):
            parse_form('{"components": ' + "[" * 100000 + "]" * 100000 + "}")


def test_unknown_output_type_is_reported_not_raised():
    result = validate_output("SELECT 1", "xml")
    assert not result.is_valid
    assert result.errors == ["Unknown output type: xml"]
