# src/clearbridge/core/templates.py
"""Jinja2 payload templates for provider requests.

Endpoint payload templates address the composed data bundle by model name:

    {"IndexNumber": "{{ ProviderRequest.IndexNumber }}",
     "programId": {{ ProviderRequest.programId }}}

Two legacy placeholder spellings, ``${Model.Field}`` and ``{Model.Field}``,
are rewritten to ``{{ Model.Field }}`` before parsing so older catalog
entries keep working.

Missing fields render as empty strings (ChainableUndefined) instead of
failing: enrichment already logged the gap and the provider is the real
validator. Output that looks like JSON must parse as JSON.
"""

from __future__ import annotations

import json
import re
from collections.abc import Mapping
from typing import Any

from jinja2 import ChainableUndefined, Environment, TemplateSyntaxError
from jinja2.exceptions import SecurityError
from jinja2.nodes import Const, Filter, Getattr, Getitem, Name, Node, Output, Template
from jinja2.sandbox import SandboxedEnvironment

from clearbridge.contracts.errors import TemplateRenderError

__all__ = [
    "PayloadTemplate",
    "normalize_placeholders",
    "placeholder_path",
]

_DOLLAR_PLACEHOLDER = re.compile(r"\$\{\s*([A-Za-z_][\w.]*)\s*\}")
# Single-brace form; the lookbehind keeps "{{ x }}" and "${x}" intact.
_BRACE_PLACEHOLDER = re.compile(r"(?<![{$])\{\s*([A-Za-z_][\w.]*)\s*\}")


def normalize_placeholders(template_string: str) -> str:
    """Rewrite ``${X}`` and ``{X}`` placeholders into Jinja2 ``{{ X }}``."""
    rewritten = _DOLLAR_PLACEHOLDER.sub(r"{{ \1 }}", template_string)
    return _BRACE_PLACEHOLDER.sub(r"{{ \1 }}", rewritten)


def _json_filter(value: Any) -> str:
    """Render a value as a JSON literal (strings quoted and escaped)."""
    if isinstance(value, ChainableUndefined):
        return '""'
    return json.dumps(value, default=str)


def _dotted_path(node: Node) -> str | None:
    """Dotted path of a Name/Getattr/Getitem chain, or None for anything else."""
    if isinstance(node, Name):
        return node.name
    if isinstance(node, Getattr):
        parent = _dotted_path(node.node)
        return f"{parent}.{node.attr}" if parent is not None else None
    if isinstance(node, Getitem) and isinstance(node.arg, Const) and isinstance(node.arg.value, str):
        parent = _dotted_path(node.node)
        return f"{parent}.{node.arg.value}" if parent is not None else None
    if isinstance(node, Filter) and node.node is not None:
        return _dotted_path(node.node)
    return None


def placeholder_path(text: str) -> str | None:
    """Dotted path when ``text`` is exactly one placeholder, else None.

    Examples:
        >>> placeholder_path("{{ Subject.Id }}")
        'Subject.Id'
        >>> placeholder_path("${ProgramId}")
        'ProgramId'
        >>> placeholder_path("Dear {{ Subject.FirstName }}")
    """
    candidate = normalize_placeholders(text.strip())
    try:
        ast: Template = Environment().parse(candidate)
    except TemplateSyntaxError:
        return None
    if len(ast.body) != 1 or not isinstance(ast.body[0], Output):
        return None
    nodes = ast.body[0].nodes
    if len(nodes) != 1:
        return None
    return _dotted_path(nodes[0])


class PayloadTemplate:
    """Sandboxed Jinja2 template producing a provider request body.

    Example:
        template = PayloadTemplate('{"subjectId": {{ SubjectId }}}')
        body = template.render({"SubjectId": 7})
        # body == '{"subjectId": 7}'
    """

    def __init__(self, template_string: str) -> None:
        """Initialize template.

        Raises:
            TemplateRenderError: If template syntax is invalid
        """
        self._template_string = normalize_placeholders(template_string)

        self._env = SandboxedEnvironment(
            undefined=ChainableUndefined,
            autoescape=False,  # JSON, not HTML
        )
        self._env.filters["json"] = _json_filter

        try:
            self._template = self._env.from_string(self._template_string)
        except TemplateSyntaxError as e:
            raise TemplateRenderError(f"Invalid template syntax: {e}") from e

    def render(self, bundle: Mapping[str, Any]) -> str:
        """Render the template against a named data bundle.

        Raises:
            TemplateRenderError: On sandbox violation, rendering failure, or
                JSON-looking output that does not parse
        """
        try:
            rendered = self._template.render(**bundle)
        except SecurityError as e:
            raise TemplateRenderError(f"Sandbox violation: {e}") from e
        except Exception as e:
            raise TemplateRenderError(f"Template rendering failed: {e}") from e

        stripped = rendered.strip()
        if stripped.startswith(("{", "[")):
            try:
                json.loads(stripped)
            except json.JSONDecodeError as e:
                raise TemplateRenderError(f"Rendered payload is not valid JSON: {e}") from e
        return rendered
