"""Typed template expressions for rule card responses.

Templates are plain text with brace segments:

* ``{sleep_hours}`` is a placeholder, replaced from the value mapping.
* ``{sleep_hours < 5 ? "Rest today" : sleep_hours < 6 ? "Go easy" : "Proceed"}``
  is a conditional: an ordered chain of numeric comparisons, each paired
  with a text, followed by a default text.

Templates are parsed once into a small tree and evaluated against a value
mapping. Nothing is ever passed to ``eval``.
"""

from __future__ import annotations

import logging
import operator
import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Callable, Union

logger = logging.getLogger(__name__)


class TemplateSyntaxError(ValueError):
    """Raised when a template contains a malformed brace expression."""


_OPERATORS: dict[str, Callable[[float, float], bool]] = {
    "<": operator.lt,
    "<=": operator.le,
    ">": operator.gt,
    ">=": operator.ge,
    "==": operator.eq,
    "!=": operator.ne,
}

_SEGMENT = re.compile(r"\{([^{}]*)\}")
_IDENTIFIER = re.compile(r"^\s*([a-z_][a-z0-9_]*)\s*$")
_BRANCH = re.compile(
    r'\s*([a-z_][a-z0-9_]*)\s*(<=|>=|==|!=|<|>)\s*(-?\d+(?:\.\d+)?)\s*\?\s*"([^"]*)"\s*:'
)
_DEFAULT = re.compile(r'\s*"([^"]*)"\s*$')


def _as_number(value: Any) -> float | None:
    if value is None or isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def format_value(value: Any) -> str:
    """Render a substituted value; whole floats drop their decimal point."""
    if isinstance(value, float):
        return f"{value:g}"
    return str(value)


# ---------------------------------------------------------------------------
# Expression nodes
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Text:
    value: str

    def render(self, values: dict[str, Any]) -> str:
        return self.value


@dataclass(frozen=True)
class Placeholder:
    name: str

    def render(self, values: dict[str, Any]) -> str:
        if values.get(self.name) is None:
            return "{" + self.name + "}"
        return format_value(values[self.name])


@dataclass(frozen=True)
class Comparison:
    """``field <op> number``; false when the field is absent or non-numeric."""

    field: str
    op: str
    value: float

    def evaluate(self, values: dict[str, Any]) -> bool:
        actual = _as_number(values.get(self.field))
        if actual is None:
            return False
        return _OPERATORS[self.op](actual, self.value)


@dataclass(frozen=True)
class Conditional:
    branches: tuple[tuple[Comparison, str], ...]
    default: str

    def render(self, values: dict[str, Any]) -> str:
        for predicate, text in self.branches:
            if predicate.evaluate(values):
                return text
        return self.default

    @property
    def fields(self) -> set[str]:
        return {p.field for p, _ in self.branches}


Node = Union[Text, Placeholder, Conditional]


@dataclass(frozen=True)
class Template:
    source: str
    nodes: tuple[Node, ...]

    def render(self, values: dict[str, Any]) -> str:
        return "".join(node.render(values) for node in self.nodes)

    @property
    def fields(self) -> set[str]:
        names: set[str] = set()
        for node in self.nodes:
            if isinstance(node, Placeholder):
                names.add(node.name)
            elif isinstance(node, Conditional):
                names |= node.fields
        return names


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------

def _parse_conditional(body: str) -> Conditional:
    branches: list[tuple[Comparison, str]] = []
    pos = 0
    while True:
        m = _BRANCH.match(body, pos)
        if not m:
            break
        field_name, op, number, text = m.groups()
        branches.append((Comparison(field_name, op, float(number)), text))
        pos = m.end()

    default = _DEFAULT.match(body, pos)
    if not branches or not default:
        raise TemplateSyntaxError(f"Malformed conditional expression: {{{body}}}")
    return Conditional(branches=tuple(branches), default=default.group(1))


@lru_cache(maxsize=512)
def compile_template(source: str) -> Template:
    """Parse template text into a :class:`Template`.

    Raises:
        TemplateSyntaxError: If a brace segment is neither a placeholder nor
            a well-formed conditional.
    """
    nodes: list[Node] = []
    pos = 0
    for m in _SEGMENT.finditer(source):
        if m.start() > pos:
            nodes.append(Text(source[pos:m.start()]))
        body = m.group(1)
        ident = _IDENTIFIER.match(body)
        if ident:
            nodes.append(Placeholder(ident.group(1)))
        else:
            nodes.append(_parse_conditional(body))
        pos = m.end()
    if pos < len(source):
        nodes.append(Text(source[pos:]))
    return Template(source=source, nodes=tuple(nodes))


def render_template(source: str, values: dict[str, Any]) -> str:
    """Compile and render; returns the unmodified source on any failure."""
    try:
        return compile_template(source).render(values)
    except TemplateSyntaxError:
        logger.warning("Template failed to parse, using raw text: %r", source[:60])
        return source
