"""
Output Checks
--------------
One check function per output grammar.  Each returns:
    (errors: list[str], suggestions: list[str])

Errors make the output invalid; suggestions are advisory.  The validator
aggregates results into a ValidationResult.
"""
from __future__ import annotations

import re

from codegen_rag.validation.structures import Form, Workflow

Findings = tuple[list[str], list[str]]

# --- SQL ----------------------------------------------------------------------

SQL_KEYWORDS = re.compile(r"\b(SELECT|INSERT|UPDATE|DELETE|CREATE|ALTER|DROP|WITH)\b", re.IGNORECASE)
SELECT_KEYWORD = re.compile(r"\bSELECT\b", re.IGNORECASE)
FROM_KEYWORD = re.compile(r"\bFROM\b", re.IGNORECASE)
LITERAL_SELECT = re.compile(
    r"""^\s*SELECT\s+(?:[-+]?\d+(?:\.\d+)?|'(?:[^']|'')*'|"[^"]*"|NULL|TRUE|FALSE)\s*;?\s*$""",
    re.IGNORECASE,
)
TEMPLATE_SYNTAX = re.compile(r"\$\{|\$\(|`")
# string literals are matched first so comment markers inside them survive
_LITERAL_OR_COMMENT = re.compile(r"'(?:[^']|'')*'|--[^\n]*|/\*.*?\*/", re.DOTALL)


def strip_sql_comments(sql: str) -> str:
    """Remove -- and /* */ comments that sit outside string literals."""
    return _LITERAL_OR_COMMENT.sub(
        lambda m: m.group(0) if m.group(0).startswith("'") else " ",
        sql,
    )


def check_sql(code: str) -> Findings:
    errors: list[str] = []
    suggestions: list[str] = []

    if not code.strip():
        return ["Generated SQL is empty"], suggestions

    sql = strip_sql_comments(code).strip()

    if not SQL_KEYWORDS.search(sql):
        errors.append("Generated code does not appear to be valid SQL")
        suggestions.append("Ensure the request clearly describes a database operation")

    if sql.count("(") != sql.count(")"):
        errors.append("Unbalanced parentheses in SQL query")
        suggestions.append("Check for missing opening or closing parentheses")

    if sql.count("'") % 2 != 0:
        errors.append("Unterminated string literal in SQL query")
        suggestions.append("Check for missing closing quotes")

    if SELECT_KEYWORD.search(sql) and not FROM_KEYWORD.search(sql) and not LITERAL_SELECT.match(sql):
        errors.append("SELECT statement missing FROM clause")
        suggestions.append("Add a FROM clause to specify the table(s) to query")

    if TEMPLATE_SYNTAX.search(code):
        suggestions.append(
            "Generated SQL contains template literals or shell syntax - verify this is intentional"
        )

    return errors, suggestions


# --- n8n ----------------------------------------------------------------------

def check_workflow(workflow: Workflow) -> Findings:
    errors: list[str] = []
    suggestions: list[str] = []

    if workflow.nodes is None:
        errors.append('n8n workflow must contain a "nodes" array')
    elif not workflow.nodes:
        errors.append("n8n workflow must contain at least one node")

    if workflow.connections is None:
        errors.append('n8n workflow must contain a "connections" object')

    for node in workflow.nodes or []:
        if node.name is None:
            errors.append(f'Node at index {node.index} is missing a "name" property')
        if node.type is None:
            errors.append(f'Node at index {node.index} is missing a "type" property')
        if node.position is None:
            errors.append(f'Node at index {node.index} is missing valid "position" coordinates')
        if node.parameters is None:
            suggestions.append(f'Node "{node.label}" has no parameters - verify this is intentional')

    # a lone node has nothing to connect to
    if workflow.nodes and workflow.connections is not None and len(workflow.nodes) > 1:
        connected = workflow.connected_names()
        for node in workflow.nodes:
            if node.name not in connected:
                suggestions.append(f'Node "{node.label}" appears to be isolated (no connections)')

    return errors, suggestions


# --- Form.io ------------------------------------------------------------------

COMPONENT_KEY = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")
CHOICE_TYPES = ("select", "radio", "selectboxes")


def check_form(form: Form) -> Findings:
    errors: list[str] = []
    suggestions: list[str] = []

    if form.components is None:
        return ['Form.io form must contain a "components" array'], suggestions
    if not form.components:
        errors.append("Form.io form must contain at least one component")

    seen_keys: set[str] = set()
    for comp in form.components:
        ref = comp.key or comp.index
        if comp.type is None:
            errors.append(f'Component at index {comp.index} is missing a "type" property')
        if comp.key is None:
            errors.append(f'Component at index {comp.index} is missing a "key" property')
        else:
            if comp.key in seen_keys:
                errors.append(f'Duplicate component key found: "{comp.key}"')
            seen_keys.add(comp.key)
            if not COMPONENT_KEY.match(comp.key):
                errors.append(f'Component key "{comp.key}" contains invalid characters')

        if comp.label is None and comp.type != "button":
            suggestions.append(f'Component "{ref}" is missing a "label" property')
        if comp.type in CHOICE_TYPES and not comp.has_values:
            suggestions.append(f'Component "{ref}" of type "{comp.type}" should have data.values defined')
        if comp.required and comp.label is None:
            suggestions.append(f'Required component "{ref}" should have a label')

    if not any(comp.is_submit_button for comp in form.components):
        suggestions.append("Form does not contain a submit button")

    return errors, suggestions
