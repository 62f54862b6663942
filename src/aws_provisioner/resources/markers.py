"""Field markers that describe how AWS treats each resource attribute.

Markers ride on model fields through ``Annotated`` and are read back by the
graph builder (``Ref``) and by the registry on behalf of the differ
(``ForceNew``, ``Compare``)::

    vpc_id: Annotated[str, Ref("aws_vpc"), ForceNew()]
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import cache
from typing import Any, Literal, TypeAlias, TypeVar

M = TypeVar("M")
CompareStrategy: TypeAlias = Literal["partial", "exact", "set"]


@dataclass(frozen=True, slots=True)
class Ref:
    """The field carries ``${type.name.attribute}`` references.

    ``resource_type`` restricts which type may be referenced (``None``
    accepts any) and ``attribute`` is the attribute the reference must read,
    e.g. an instance's ``key_name`` reads a key pair's ``key_name`` rather
    than its ``id``.
    """

    resource_type: str | None = None
    attribute: str = "id"


@dataclass(frozen=True, slots=True)
class ForceNew:
    """AWS cannot modify the field in place; a change means replacement."""


@dataclass(frozen=True, slots=True)
class Compare:
    """Comparison the differ applies to the field.

    ``"partial"`` compares only the dict keys present in the declaration,
    ``"exact"`` requires equality and ``"set"`` ignores list order and
    duplicates (security group rules, security group ids).
    """

    strategy: CompareStrategy


def _model_class(resource_or_cls: Any) -> type:
    return resource_or_cls if isinstance(resource_or_cls, type) else type(resource_or_cls)


@cache
def _markers(cls: type, marker_type: type[M]) -> dict[str, M]:
    """Field name -> first *marker_type* marker, for every field that has one."""
    found: dict[str, M] = {}
    for name, info in cls.model_fields.items():  # type: ignore[attr-defined]
        for meta in info.metadata:
            if isinstance(meta, marker_type):
                found[name] = meta
                break
    return found


def collect_refs(resource_or_cls: Any) -> dict[str, Ref]:
    """``Ref`` markers by field name."""
    return dict(_markers(_model_class(resource_or_cls), Ref))


def collect_ref_types(resource_or_cls: Any) -> dict[str, str | None]:
    """Map each ``Ref`` field to the resource type it must point to."""
    return {name: ref.resource_type for name, ref in collect_refs(resource_or_cls).items()}


def collect_force_new(resource_or_cls: Any) -> frozenset[str]:
    """Names of fields whose change forces replacement."""
    return frozenset(_markers(_model_class(resource_or_cls), ForceNew))


def collect_compare_strategies(resource_or_cls: Any) -> dict[str, CompareStrategy]:
    strategies = _markers(_model_class(resource_or_cls), Compare)
    return {name: marker.strategy for name, marker in strategies.items()}
