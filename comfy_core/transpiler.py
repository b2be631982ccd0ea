"""
transpiler.py
=============
Deterministic template engine.

Converts a CanonicalWorkflow into a standalone Python client script that
rebuilds the same API-format prompt node by node and can queue it on a
ComfyUI server through its HTTP ``/prompt`` endpoint.

- Nodes are emitted in dependency order so every link refers to a variable
  that already exists.
- Literal widget values are rendered with ``repr`` and round-trip exactly;
  non-finite floats become ``float("inf")`` style calls.
- Dangling links, negative output indexes and cycles raise GenerationError.
"""

from __future__ import annotations

import heapq
import logging
import math
import re
from typing import Any

from .errors import GenerationError
from .workflow_reader import CanonicalWorkflow, WorkflowNode, as_link

logger = logging.getLogger(__name__)

DEFAULT_SERVER_URL = "http://127.0.0.1:8188"

_NUMERIC_ID_RE = re.compile(r"^\d+(:\d+)*$")

# Module-level names defined by the generated header and footer.
_RESERVED_NAMES = frozenset(
    {"json", "urllib", "uuid", "COMFYUI_SERVER", "prompt", "add_node", "queue_prompt"}
)


# ---------------------------------------------------------------------------
# Template helpers
# ---------------------------------------------------------------------------


def _safe_var(name: str) -> str:
    """Convert a node class type / id into a valid Python identifier."""
    var = re.sub(r"[^a-zA-Z0-9_]", "_", name).lower().strip("_") or "node"
    return f"n_{var}" if var[0].isdigit() else var


def _literal(value: Any) -> str:
    """``repr`` that stays valid source for inf and nan, including nested ones."""
    if isinstance(value, float) and not math.isfinite(value):
        if math.isnan(value):
            return "float('nan')"
        return "float('inf')" if value > 0 else "float('-inf')"
    if isinstance(value, list):
        return f"[{', '.join(_literal(item) for item in value)}]"
    if isinstance(value, dict):
        items = ", ".join(f"{_literal(k)}: {_literal(v)}" for k, v in value.items())
        return f"{{{items}}}"
    return repr(value)


def _node_sort_key(node_id: str) -> tuple:
    if _NUMERIC_ID_RE.match(node_id):
        return (0, tuple(int(part) for part in node_id.split(":")), node_id)
    return (1, (), node_id)


def _topological_order(workflow: CanonicalWorkflow) -> list[str]:
    """Kahn's algorithm; ties resolved by numeric-aware node id order."""
    upstream: dict[str, set[str]] = {node_id: set() for node_id in workflow.nodes}
    downstream: dict[str, set[str]] = {node_id: set() for node_id in workflow.nodes}

    for target, input_name, link in workflow.links():
        if link.source_id not in workflow.nodes:
            raise GenerationError(
                f"node '{target}' input '{input_name}' links to missing node '{link.source_id}'"
            )
        if link.output_index < 0:
            raise GenerationError(
                f"node '{target}' input '{input_name}' uses negative output index "
                f"{link.output_index}"
            )
        upstream[target].add(link.source_id)
        downstream[link.source_id].add(target)

    ready = [(_node_sort_key(n), n) for n, deps in upstream.items() if not deps]
    heapq.heapify(ready)
    order: list[str] = []
    while ready:
        _, node_id = heapq.heappop(ready)
        order.append(node_id)
        for child in downstream[node_id]:
            upstream[child].discard(node_id)
            if not upstream[child]:
                heapq.heappush(ready, (_node_sort_key(child), child))

    if len(order) != len(workflow.nodes):
        stuck = sorted((n for n in workflow.nodes if n not in order), key=_node_sort_key)
        raise GenerationError(f"dependency cycle between nodes {', '.join(stuck)}")
    return order


# ---------------------------------------------------------------------------
# Main transpiler class
# ---------------------------------------------------------------------------


class WorkflowTranspiler:
    """
    Renders a CanonicalWorkflow as a Python client script.

    Usage
    -----
    ::

        workflow = await ApiJsonWorkflowReader().read(json.loads(raw))
        code = WorkflowTranspiler().generate(workflow)
    """

    def __init__(self, server_url: str = DEFAULT_SERVER_URL) -> None:
        self.server_url = server_url

    def generate(self, workflow: CanonicalWorkflow) -> str:
        order = _topological_order(workflow)
        variables = self._assign_variables(workflow, order)

        parts = [self._build_header(workflow)]
        for node_id in order:
            node = workflow.nodes[node_id]
            parts.append(f"\n# {'=' * 70}")
            parts.append(f"# Node {node_id}: {node.class_type}")
            parts.append(f"# {'=' * 70}")
            parts.append(self._render_node(node, variables))
        parts.append(self._build_footer())

        logger.info("Generated client code for %d nodes.", workflow.node_count)
        return "\n".join(parts)

    @staticmethod
    def _assign_variables(workflow: CanonicalWorkflow, order: list[str]) -> dict[str, str]:
        variables: dict[str, str] = {}
        taken: set[str] = set(_RESERVED_NAMES)
        for node_id in order:
            base = _safe_var(f"{workflow.nodes[node_id].class_type}_{node_id}")
            var, n = base, 2
            while var in taken:
                var, n = f"{base}_{n}", n + 1
            taken.add(var)
            variables[node_id] = var
        return variables

    def _render_node(self, node: WorkflowNode, variables: dict[str, str]) -> str:
        lines = [
            f"{variables[node.node_id]} = add_node(",
            f"    {node.node_id!r},",
            f"    {node.class_type!r},",
        ]
        if node.inputs:
            lines.append("    {")
            for name, value in node.inputs.items():
                lines.append(f"        {name!r}: {self._render_value(value, variables)},")
            lines.append("    },")
        else:
            lines.append("    {},")
        if node.title:
            lines.append(f"    title={node.title!r},")
        lines.append(")")
        return "\n".join(lines)

    @staticmethod
    def _render_value(value: Any, variables: dict[str, str]) -> str:
        link = as_link(value)
        if link is not None:
            return f"[{variables[link.source_id]}, {link.output_index}]"
        return _literal(value)

    def _build_header(self, workflow: CanonicalWorkflow) -> str:
        return f'''\
"""
Auto-generated ComfyUI client script.
Nodes       : {workflow.node_count}
Node types  : {", ".join(workflow.class_types_found)}
Generated by: ComfyUI Workflow Transpiler v1.0

Run this file to queue the workflow on the server below, or import it and
use `prompt` / `queue_prompt()` directly.
"""

import json
import urllib.request
import uuid

COMFYUI_SERVER = {self.server_url!r}

prompt: dict = {{}}


def add_node(node_id, class_type, inputs, title=None):
    """Register a node in the prompt graph and return its id."""
    prompt[node_id] = {{"class_type": class_type, "inputs": inputs}}
    if title:
        prompt[node_id]["_meta"] = {{"title": title}}
    return node_id
'''

    def _build_footer(self) -> str:
        return '''

# ---------------------------------------------------------------------------


def queue_prompt(server=COMFYUI_SERVER):
    """Submit the prompt graph to a ComfyUI server and return its response."""
    payload = json.dumps({"prompt": prompt, "client_id": str(uuid.uuid4())}).encode("utf-8")
    request = urllib.request.Request(
        f"{server}/prompt",
        data=payload,
        headers={"Content-Type": "application/json"},
    )
    with urllib.request.urlopen(request) as response:
        return json.loads(response.read())


if __name__ == "__main__":
    print(json.dumps(queue_prompt(), indent=2))
'''


__all__ = ["DEFAULT_SERVER_URL", "WorkflowTranspiler"]
