# Overview: Stage/transition graph export (json, mermaid, graphviz).

from __future__ import annotations

from ..validation import ValidationError

FORMATS = ("json", "mermaid", "graphviz")


def build_graph(stages, transitions) -> dict:
    """
    Nodes for active stages and the edges between them.

    Pure data transform: callers pass the rows, nothing is queried here.
    """
    active = {s.id: s for s in stages if s.is_active}
    nodes = [
        {
            "id": s.id,
            "code": s.code,
            "name": s.name,
            "sequence": s.sequence,
            "allowed_actions": list(s.allowed_actions or []),
            "is_terminal": s.is_terminal,
        }
        for s in sorted(active.values(), key=lambda s: (s.sequence, s.id))
    ]
    edges = [
        {
            "id": t.id,
            "from": active[t.from_stage_id].code,
            "to": active[t.to_stage_id].code,
            "action": t.action,
            "auto_transition": bool(t.auto_transition),
            "has_conditions": bool(t.conditions),
            "required_fields": list(t.required_fields or []),
        }
        for t in sorted(transitions, key=lambda t: t.id)
        if t.from_stage_id in active and t.to_stage_id in active
    ]
    return {"nodes": nodes, "edges": edges}


def _mermaid_label(text: str) -> str:
    return text.replace('"', "#quot;")


def to_mermaid(graph: dict) -> str:
    lines = ["flowchart TD"]
    for node in graph["nodes"]:
        label = _mermaid_label(node["name"])
        if node["is_terminal"]:
            lines.append(f'    {node["code"]}(["{label}"])')
        else:
            lines.append(f'    {node["code"]}["{label}"]')
    for edge in graph["edges"]:
        arrow = "-.->" if edge["auto_transition"] else "-->"
        lines.append(f'    {edge["from"]} {arrow}|{edge["action"]}| {edge["to"]}')
    return "\n".join(lines) + "\n"


def _dot_label(text: str) -> str:
    return text.replace("\\", "\\\\").replace('"', '\\"')


def to_graphviz(graph: dict) -> str:
    lines = ["digraph workflow {", "  rankdir=LR;", "  node [shape=box];"]
    for node in graph["nodes"]:
        extra = ", peripheries=2" if node["is_terminal"] else ""
        lines.append(f'  "{node["code"]}" [label="{_dot_label(node["name"])}"{extra}];')
    for edge in graph["edges"]:
        style = ", style=dashed" if edge["auto_transition"] else ""
        lines.append(f'  "{edge["from"]}" -> "{edge["to"]}" [label="{edge["action"]}"{style}];')
    lines.append("}")
    return "\n".join(lines) + "\n"


def render(graph: dict, fmt: str) -> dict:
    """Render a graph in fmt; unknown formats raise ValidationError."""
    fmt = (fmt or "json").lower()
    if fmt == "json":
        return {"format": "json", **graph}
    if fmt == "mermaid":
        return {"format": "mermaid", "content": to_mermaid(graph)}
    if fmt == "graphviz":
        return {"format": "graphviz", "content": to_graphviz(graph)}
    raise ValidationError([{"field": "format", "message": f"must be one of {', '.join(FORMATS)}"}])
