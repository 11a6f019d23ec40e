"""
Prompt templates for the three output grammars.

Keeping templates in a separate module makes them easy to iterate on
without touching generation logic.  Each output type maps to a fixed system
prompt and a user prompt that wraps the retrieved context and the request.
"""
from __future__ import annotations

from typing import NamedTuple

from codegen_rag.errors import UnsupportedOutputTypeError
from codegen_rag.schemas import OutputType

# ---------------------------------------------------------------------------
# SQL
# ---------------------------------------------------------------------------

SQL_SYSTEM_PROMPT = """\
You are an expert SQL query generator. Your task is to generate syntactically \
correct, efficient SQL queries based on user requests and the provided database \
schema context.

Guidelines:
- Generate only valid SQL syntax
- Use table and column names exactly as they appear in the DDL context
- Include inline comments explaining the query logic
- Optimize for readability and performance
- Use appropriate JOINs, WHERE clauses, and aggregations
- Return ONLY the SQL code -- no markdown, no explanation, no prose
"""

SQL_USER_TEMPLATE = """\
Database Schema Context:
{context}

User Request:
{request}

Generate a SQL query that fulfills the user's request. Return only the SQL code with inline comments.
"""

# ---------------------------------------------------------------------------
# n8n workflow
# ---------------------------------------------------------------------------

N8N_SYSTEM_PROMPT = """\
You are an expert n8n workflow automation specialist. Your task is to generate \
valid n8n workflow JSON based on user requests and the provided context.

Guidelines:
- Produce a complete workflow: a "nodes" array and a "connections" object
- Give every node a descriptive "name", a "type", a "position" and its "parameters"
- Connect nodes with correct input/output mappings so no node is left isolated
- Use realistic parameter values and configurations
- Follow n8n best practices for error handling and data transformation
- Return ONLY a single JSON document -- no markdown, no explanation
"""

N8N_USER_TEMPLATE = """\
Context Information:
{context}

User Request:
{request}

Generate a complete n8n workflow JSON that fulfills the user's request. Return only the JSON code.
"""

# ---------------------------------------------------------------------------
# Form.io form
# ---------------------------------------------------------------------------

FORMIO_SYSTEM_PROMPT = """\
You are an expert Form.io form designer. Your task is to generate valid Form.io \
form JSON based on user requests and the provided context.

Guidelines:
- Produce a "components" array using appropriate field types (textfield, email, number, select, checkbox, ...)
- Configure validation rules where applicable (required, email format, min/max length, ...)
- Give every input an accessible "label" and a unique "key" (letters, digits, underscores)
- Provide data.values for select, radio and selectboxes components
- Include a submit button
- Return ONLY a single JSON document -- no markdown, no explanation
"""

FORMIO_USER_TEMPLATE = """\
Context Information:
{context}

User Request:
{request}

Generate a complete Form.io form JSON that fulfills the user's request. Return only the JSON code.
"""


class PromptPair(NamedTuple):
    system_prompt: str
    user_prompt: str


_TEMPLATES: dict[OutputType, tuple[str, str]] = {
    OutputType.SQL: (SQL_SYSTEM_PROMPT, SQL_USER_TEMPLATE),
    OutputType.N8N: (N8N_SYSTEM_PROMPT, N8N_USER_TEMPLATE),
    OutputType.FORMIO: (FORMIO_SYSTEM_PROMPT, FORMIO_USER_TEMPLATE),
}


def build_prompts(output_type: OutputType, context: str, request: str) -> PromptPair:
    """Return the (system, user) prompt pair for an output type."""
    try:
        system_prompt, user_template = _TEMPLATES[OutputType(output_type)]
    except (KeyError, ValueError):
        raise UnsupportedOutputTypeError(f"Unknown output type: {output_type!r}", stage="prompt") from None
    return PromptPair(
        system_prompt=system_prompt,
        user_prompt=user_template.format(context=context, request=request),
    )
