"""
Output Validator
-----------------
Structural checks on generated code, returned as a ValidationResult.

Pure: no I/O and no state, so the same input always yields the same
result.  An invalid result is informational; callers still return the
generated code alongside it.

JSON outputs (n8n, formio) are parsed into structures first.  A parse
failure is reported as the single error "Invalid JSON: ..." and the
structural checks are skipped.
"""
from __future__ import annotations

from codegen_rag.schemas import OutputType, ValidationResult
from codegen_rag.validation.checks import check_form, check_sql, check_workflow
from codegen_rag.validation.structures import OutputParseError, parse_form, parse_workflow

INVALID_JSON_SUGGESTION = "Ensure the generated code is valid JSON format"


def validate_output(code: str, output_type: OutputType | str) -> ValidationResult:
    """Run the checks for `output_type` against `code`."""
    try:
        kind = OutputType(output_type)
    except ValueError:
        return ValidationResult(is_valid=False, errors=[f"Unknown output type: {output_type}"])

    try:
        if kind is OutputType.SQL:
            errors, suggestions = check_sql(code)
        elif kind is OutputType.N8N:
            errors, suggestions = check_workflow(parse_workflow(code))
        else:
            errors, suggestions = check_form(parse_form(code))
    except OutputParseError as exc:
        return ValidationResult(
            is_valid=False,
            errors=[f"Invalid JSON: {exc}"],
            suggestions=[INVALID_JSON_SUGGESTION],
        )

    return ValidationResult(is_valid=not errors, errors=errors, suggestions=suggestions)
