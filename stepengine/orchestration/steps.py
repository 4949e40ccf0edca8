"""
References to step callables that another document's engine can resolve.

A delegated step travels between frames as ``"package.module:qualname"``; the
receiving engine imports it, or looks it up among the steps it registered.
"""

import pkgutil
from typing import Any, Callable, Dict, Mapping, Optional

from stepengine.error_handling.exceptions import StepResolutionError

_registered_steps: Dict[str, Callable[..., Any]] = {}


def register_step(name: Optional[str] = None):
    """
    Register a step under a reference so frames can run it.

    Needed for steps that are not importable by module path, such as steps
    defined inside functions.
    """

    def decorator(fn: Callable[..., Any]) -> Callable[..., Any]:
        reference = name or f"{fn.__module__}:{fn.__qualname__}"
        _registered_steps[reference] = fn
        fn.__step_reference__ = reference
        return fn

    return decorator


def step_reference(fn: Any) -> str:
    """Reference under which a step can be resolved in another document."""
    if isinstance(fn, str):
        return fn

    reference = getattr(fn, "__step_reference__", None)
    if reference:
        return reference

    qualname = getattr(fn, "__qualname__", None)
    module = getattr(fn, "__module__", None)
    if not callable(fn) or not qualname or not module:
        raise StepResolutionError(f"{fn!r} is not a step callable", reference=repr(fn))
    if "<locals>" in qualname or "<lambda>" in qualname:
        raise StepResolutionError(
            f"Step {qualname} cannot be imported by reference; register it with @register_step()",
            reference=f"{module}:{qualname}",
        )
    return f"{module}:{qualname}"


def resolve_step(
    reference: str, steps: Optional[Mapping[str, Callable[..., Any]]] = None
) -> Callable[..., Any]:
    """
    Turn a step reference back into the callable.

    Raises:
        StepResolutionError: If the reference names nothing callable
    """
    for registry in (steps or {}, _registered_steps):
        if reference in registry:
            return registry[reference]

    try:
        resolved = pkgutil.resolve_name(reference)
    except (ImportError, AttributeError, ValueError) as exc:
        raise StepResolutionError(
            f"Cannot resolve step {reference!r}: {exc}", reference=reference, cause=exc
        ) from exc

    if not callable(resolved):
        raise StepResolutionError(f"Step {reference!r} is not callable", reference=reference)
    return resolved


def clear_registered_steps() -> None:
    _registered_steps.clear()
