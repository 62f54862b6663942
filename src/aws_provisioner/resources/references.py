"""Attribute reference expressions.

A declared attribute value may point at another resource's attribute with
``${<resource_type>.<name>.<attribute>}``. A value consisting of exactly one
expression resolves to the referenced value unchanged; expressions embedded
in a longer string are interpolated as text. Lists and dicts are walked
recursively.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from collections.abc import Callable, Iterator

UNKNOWN = "(known after apply)"

_EXPR = re.compile(r"\$\{([A-Za-z0-9_]+)\.([A-Za-z0-9_]+)\.([A-Za-z0-9_]+)\}")


@dataclass(frozen=True, slots=True)
class AttributeRef:
    """A parsed ``${type.name.attribute}`` expression."""

    resource_type: str
    name: str
    attribute: str

    @property
    def address(self) -> str:
        return f"{self.resource_type}.{self.name}"

    def __str__(self) -> str:
        return f"${{{self.address}.{self.attribute}}}"


def _parse(match: re.Match[str]) -> AttributeRef:
    return AttributeRef(resource_type=match[1], name=match[2], attribute=match[3])


def iter_refs(value: Any) -> Iterator[AttributeRef]:
    """Yield every reference found in *value*, depth first."""
    if isinstance(value, str):
        for match in _EXPR.finditer(value):
            yield _parse(match)
    elif isinstance(value, dict):
        for v in value.values():
            yield from iter_refs(v)
    elif isinstance(value, list | tuple):
        for v in value:
            yield from iter_refs(v)


def is_unknown(value: Any) -> bool:
    """True if *value* (or anything nested in it) is not known until apply."""
    if value == UNKNOWN:
        return True
    if isinstance(value, dict):
        return any(is_unknown(v) for v in value.values())
    if isinstance(value, list | tuple):
        return any(is_unknown(v) for v in value)
    return False


def resolve_refs(value: Any, lookup: Callable[[AttributeRef], Any]) -> Any:
    """Return a copy of *value* with every reference replaced via *lookup*.

    *lookup* returns the referenced value, or ``UNKNOWN`` when it cannot be
    known yet. An embedded expression whose value is unknown makes the whole
    string unknown.
    """
    if isinstance(value, str):
        full = _EXPR.fullmatch(value)
        if full is not None:
            return lookup(_parse(full))

        unknown = False

        def _sub(match: re.Match[str]) -> str:
            nonlocal unknown
            resolved = lookup(_parse(match))
            if resolved == UNKNOWN:
                unknown = True
            return str(resolved)

        text = _EXPR.sub(_sub, value)
        return UNKNOWN if unknown else text
    if isinstance(value, dict):
        return {k: resolve_refs(v, lookup) for k, v in value.items()}
    if isinstance(value, list):
        return [resolve_refs(v, lookup) for v in value]
    return value
