"""Variable references between tasks (`$<id>` and `$<id>.<dotted.path>`).

Parameter values are parsed once into a small tagged variant:

- `Literal(value)` for anything that is not a reference;
- `Reference(task_id, path)` for strings such as ``"$1"`` or ``"$1.uuid"``;
- `ListBinding(items)` for lists, parsed element-wise.

Resolution against a result context is then a total function over that
variant and never re-parses strings.
"""

from __future__ import annotations

import re
from collections.abc import Iterator, Mapping
from dataclasses import dataclass
from typing import Any

REFERENCE_PATTERN = re.compile(r"^\$(\d+)(?:\.(.+))?$")

_MISSING = object()


class ReferenceResolutionError(LookupError):
    """Base error for references that cannot be substituted."""

    def __init__(self, message: str, *, task_id: int, raw: str) -> None:
        super().__init__(message)
        self.task_id = task_id
        self.raw = raw


class UnresolvedReference(ReferenceResolutionError):
    """Referenced task has no stored result in the context."""


class PathResolutionError(ReferenceResolutionError):
    """Referenced result exists but the dotted path leads nowhere."""


@dataclass(frozen=True, slots=True)
class Literal:
    value: Any

    def references(self) -> Iterator[Reference]:
        return iter(())


@dataclass(frozen=True, slots=True)
class Reference:
    task_id: int
    path: tuple[str, ...]
    raw: str

    def references(self) -> Iterator[Reference]:
        yield self


@dataclass(frozen=True, slots=True)
class ListBinding:
    items: tuple[Literal | Reference, ...]

    def references(self) -> Iterator[Reference]:
        for item in self.items:
            yield from item.references()


ParamBinding = Literal | Reference | ListBinding


def parse_reference(value: Any) -> Reference | None:
    """Return a `Reference` when `value` is a well-formed variable string."""

    if not isinstance(value, str):
        return None
    match = REFERENCE_PATTERN.match(value)
    if match is None:
        return None
    path = tuple(match.group(2).split(".")) if match.group(2) else ()
    return Reference(task_id=int(match.group(1)), path=path, raw=value)


def parse_value(value: Any) -> ParamBinding:
    if isinstance(value, list):
        return ListBinding(items=tuple(_parse_scalar(item) for item in value))
    return _parse_scalar(value)


def parse_params(params: Mapping[str, Any]) -> dict[str, ParamBinding]:
    return {key: parse_value(value) for key, value in params.items()}


def resolve_params(
    bindings: Mapping[str, ParamBinding],
    context: Mapping[int, Any],
) -> dict[str, Any]:
    """Substitute every reference in `bindings` with values from `context`."""

    return {key: resolve_binding(binding, context) for key, binding in bindings.items()}


def resolve_binding(binding: ParamBinding, context: Mapping[int, Any]) -> Any:
    if isinstance(binding, ListBinding):
        flattened: list[Any] = []
        for item in binding.items:
            resolved = _resolve_scalar(item, context)
            if isinstance(resolved, list):
                flattened.extend(resolved)
            else:
                flattened.append(resolved)
        return flattened
    return _resolve_scalar(binding, context)


def _parse_scalar(value: Any) -> Literal | Reference:
    reference = parse_reference(value)
    if reference is not None:
        return reference
    return Literal(value=value)


def _resolve_scalar(binding: Literal | Reference, context: Mapping[int, Any]) -> Any:
    if isinstance(binding, Literal):
        return binding.value

    if binding.task_id not in context:
        raise UnresolvedReference(
            f"Referenced task {binding.task_id} has no result ({binding.raw})",
            task_id=binding.task_id,
            raw=binding.raw,
        )
    task_result = context[binding.task_id]
    if not binding.path:
        return task_result

    value = _walk(task_result, binding.path)
    if value is _MISSING and isinstance(task_result, Mapping) and "result" in task_result:
        value = _walk(task_result["result"], binding.path)
    if value is _MISSING:
        raise PathResolutionError(
            f"Could not resolve '{'.'.join(binding.path)}' from task {binding.task_id} result",
            task_id=binding.task_id,
            raw=binding.raw,
        )
    return value


def _walk(root: Any, path: tuple[str, ...]) -> Any:
    current = root
    for key in path:
        if not isinstance(current, Mapping) or key not in current:
            return _MISSING
        current = current[key]
    return current
