"""
Mapping rules and callback resolution.

A mapping rule says how one remote attribute gets its value from an entity:

- Static(value): a literal
- Field(name): an attribute (or zero-argument method) of the entity
- Computed(fn): fn(entity)

Callbacks (conditions, hooks, transforms) are either a callable or the name
of a method on the entity. Callables receive the hook arguments followed by
the entity; they may declare fewer parameters and the extras are dropped.
Named methods receive only the hook arguments.
"""

import inspect
from dataclasses import dataclass
from typing import Any, Callable, Optional, Union

_MISSING = object()


@dataclass(frozen=True)
class Static:
    value: Any

    def resolve(self, entity: Any) -> Any:
        return self.value


@dataclass(frozen=True)
class Field:
    name: str
    literal_fallback: bool = False

    def resolve(self, entity: Any) -> Any:
        value = getattr(entity, self.name, _MISSING)
        if value is _MISSING:
            if self.literal_fallback:
                return self.name
            raise AttributeError(f"{type(entity).__name__} has no attribute '{self.name}'")
        if inspect.ismethod(value):
            return value()
        return value


@dataclass(frozen=True)
class Computed:
    fn: Callable[[Any], Any]

    def resolve(self, entity: Any) -> Any:
        return self.fn(entity)


MappingRule = Union[Static, Field, Computed]


def coerce_rule(raw: Any) -> MappingRule:
    """Turn a raw mapping value into a MappingRule."""
    if isinstance(raw, (Static, Field, Computed)):
        return raw
    if callable(raw):
        return Computed(raw)
    if isinstance(raw, str):
        return Field(raw, literal_fallback=True)
    return Static(raw)


def _positional_arity(fn: Callable[..., Any]) -> Optional[int]:
    """Number of positional parameters fn accepts, None if unbounded."""
    try:
        signature = inspect.signature(fn)
    except (TypeError, ValueError):
        return None

    count = 0
    for param in signature.parameters.values():
        if param.kind == param.VAR_POSITIONAL:
            return None
        if param.kind in (param.POSITIONAL_ONLY, param.POSITIONAL_OR_KEYWORD):
            count += 1
    return count


def invoke_callback(callback: Union[str, Callable[..., Any]], entity: Any, *args: Any) -> Any:
    """
    Run a callback against an entity.

    Args:
        callback: Method name on the entity, or a callable
        entity: The record the callback is about
        *args: Hook arguments (payload, result, error...)

    Returns:
        Whatever the callback returns
    """
    if isinstance(callback, str):
        return getattr(entity, callback)(*args)

    call_args = (*args, entity)
    arity = _positional_arity(callback)
    if arity is not None:
        call_args = call_args[:arity]
    return callback(*call_args)


def evaluate_condition(condition: Any, entity: Any) -> bool:
    """Evaluate a sync condition: None, a bool, a callable or a method name."""
    if condition is None:
        return True
    if isinstance(condition, bool):
        return condition
    if isinstance(condition, str) or callable(condition):
        return bool(invoke_callback(condition, entity))
    return True
