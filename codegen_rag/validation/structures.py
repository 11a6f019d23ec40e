"""
Structured views of generated JSON documents.

Generated n8n workflows and Form.io forms are parsed into these dataclasses
before any check runs, so the checks read typed fields instead of probing
raw dicts.  Fields that are absent or have the wrong shape come through as
None; whether that is an error is decided in checks.py.
"""
from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Optional


class OutputParseError(ValueError):
    """Generated text is not valid JSON."""


def _load(code: str) -> Any:
    try:
        return json.loads(code)
    except json.JSONDecodeError as exc:
        raise OutputParseError(str(exc)) from exc
    except RecursionError as exc:
        raise OutputParseError("document is nested too deeply") from exc


def _text(value: Any) -> Optional[str]:
    """Empty and missing values both read as None."""
    if value is None or value == "" or value is False:
        return None
    return value if isinstance(value, str) else str(value)


# --- n8n ----------------------------------------------------------------------

@dataclass
class WorkflowNode:
    index: int
    name: Optional[str] = None
    type: Optional[str] = None
    position: Optional[tuple] = None
    parameters: Optional[dict] = None

    @property
    def label(self) -> str:
        return self.name or str(self.index)


@dataclass
class Workflow:
    nodes: Optional[list[WorkflowNode]] = None
    # source node name -> names of the nodes it feeds
    connections: Optional[dict[str, list[str]]] = None

    def connected_names(self) -> set[str]:
        names: set[str] = set()
        for source, targets in (self.connections or {}).items():
            names.add(source)
            names.update(targets)
        return names


def _parse_position(raw: Any) -> Optional[tuple]:
    if isinstance(raw, dict):
        return (raw.get("x"), raw.get("y"))
    if isinstance(raw, list):
        return tuple(raw)
    return None


def _parse_node(index: int, raw: Any) -> WorkflowNode:
    if not isinstance(raw, dict):
        return WorkflowNode(index=index)
    parameters = raw.get("parameters")
    return WorkflowNode(
        index=index,
        name=_text(raw.get("name")),
        type=_text(raw.get("type")),
        position=_parse_position(raw.get("position")),
        parameters=parameters if isinstance(parameters, dict) else None,
    )


def _connection_targets(outputs: Any) -> list[str]:
    """Flatten {"main": [[{"node": "B", ...}, ...], ...]} into target names."""
    targets: list[str] = []
    if not isinstance(outputs, dict):
        return targets
    for branches in outputs.values():
        if not isinstance(branches, list):
            continue
        for branch in branches:
            if not isinstance(branch, list):
                continue
            for conn in branch:
                if isinstance(conn, dict) and conn.get("node"):
                    targets.append(str(conn["node"]))
    return targets


def parse_workflow(code: str) -> Workflow:
    """Parse generated n8n JSON. Raises OutputParseError on invalid JSON."""
    data = _load(code)
    if not isinstance(data, dict):
        return Workflow()

    raw_nodes = data.get("nodes")
    nodes = [_parse_node(i, n) for i, n in enumerate(raw_nodes)] if isinstance(raw_nodes, list) else None

    raw_connections = data.get("connections")
    connections = None
    if isinstance(raw_connections, dict):
        connections = {str(src): _connection_targets(out) for src, out in raw_connections.items()}

    return Workflow(nodes=nodes, connections=connections)


# --- Form.io ------------------------------------------------------------------

@dataclass
class FormComponent:
    index: int
    type: Optional[str] = None
    key: Optional[str] = None
    label: Optional[str] = None
    action: Optional[str] = None
    has_values: bool = False
    required: bool = False

    @property
    def is_submit_button(self) -> bool:
        return self.type == "button" and (self.action is None or self.action == "submit")


@dataclass
class Form:
    components: Optional[list[FormComponent]] = None


def _parse_component(index: int, raw: Any) -> FormComponent:
    if not isinstance(raw, dict):
        return FormComponent(index=index)
    data = raw.get("data")
    validate = raw.get("validate")
    return FormComponent(
        index=index,
        type=_text(raw.get("type")),
        key=_text(raw.get("key")),
        label=_text(raw.get("label")),
        action=_text(raw.get("action")),
        has_values=isinstance(data, dict) and data.get("values") is not None,
        required=isinstance(validate, dict) and bool(validate.get("required")),
    )


def parse_form(code: str) -> Form:
    """Parse generated Form.io JSON. Raises OutputParseError on invalid JSON."""
    data = _load(code)
    if not isinstance(data, dict):
        return Form()
    raw_components = data.get("components")
    components = (
        [_parse_component(i, c) for i, c in enumerate(raw_components)]
        if isinstance(raw_components, list)
        else None
    )
    return Form(components=components)
