# Copyright (c) Syntropy Systems
"""Equivalence resolution between control and candidate outcomes.

Policies are tried in a fixed order and the first applicable one decides:

1. A comparison function, when both sides returned a value.
2. An equality comparer, when both sides returned a value.
3. The control value's own ``__eq__``, when its type defines one.
4. A fallback that matches two None values, two equal values, or two
   exceptions with the same qualified type name and message.

A comparison function or comparer only ever sees values. When either side
raised, steps 1 and 2 are skipped and the fallback compares the exceptions.
"""
from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, TypeVar

if TYPE_CHECKING:
    from collections.abc import Callable

    from labcoat.outcome import Outcome

T = TypeVar("T")
T_contra = TypeVar("T_contra", contravariant=True)


class EqualityComparer(Protocol[T_contra]):
    """Pluggable structural equality over two result values."""

    def equals(self, first: T_contra, second: T_contra) -> bool:
        ...


def qualified_name(exc_type: type) -> str:
    """Return the fully-qualified name of a type, e.g. ``builtins.ValueError``."""
    return f"{exc_type.__module__}.{exc_type.__qualname__}"


def describe_error(error: BaseException | None) -> str | None:
    """Format an exception as ``module.QualName: message`` for reporting.

    Exceptions whose ``__str__`` raises are still described by type name.
    """
    if error is None:
        return None
    try:
        message = str(error)
    except Exception:
        message = "<str() failed>"
    return f"{qualified_name(type(error))}: {message}"


def exceptions_equal(first: BaseException | None, second: BaseException | None) -> bool:
    """Return whether two exceptions share a qualified type name and message.

    Exceptions rarely implement value equality, so this is deliberately loose.
    """
    if first is None or second is None:
        return False
    return (
        qualified_name(type(first)) == qualified_name(type(second))
        and str(first) == str(second)
    )


def has_natural_equality(value: object) -> bool:
    """Return whether the value's type defines its own ``__eq__``."""
    if value is None:
        return False
    return type(value).__eq__ is not object.__eq__


def _fallback_match(control: Outcome[T], candidate: Outcome[T]) -> bool:
    if control.succeeded and candidate.succeeded:
        if control.value is None and candidate.value is None:
            return True
        return control.value is not None and bool(control.value == candidate.value)

    if not control.succeeded and not candidate.succeeded:
        return exceptions_equal(control.error, candidate.error)

    return False


def outcomes_match(
    control: Outcome[T],
    candidate: Outcome[T],
    compare: Callable[[T, T], bool] | None = None,
    comparer: EqualityComparer[T] | None = None,
) -> bool:
    """Decide whether a control and candidate outcome are equivalent.

    Args:
        control: Outcome of the control operation
        candidate: Outcome of the candidate operation
        compare: Optional comparison function over the two values
        comparer: Optional equality comparer, used when no compare is given

    Returns:
        True if the outcomes match

    Raises:
        Whatever a custom comparison or ``__eq__`` raises. Callers that must
        not fail treat that as a mismatch.

    """
    both_succeeded = control.succeeded and candidate.succeeded

    if both_succeeded:
        # Values are present on both sides here, None included.
        control_value = control.value
        candidate_value = candidate.value

        if compare is not None:
            return bool(compare(control_value, candidate_value))  # type: ignore[arg-type]

        if comparer is not None:
            return bool(comparer.equals(control_value, candidate_value))  # type: ignore[arg-type]

        if has_natural_equality(control_value):
            return bool(control_value == candidate_value)

    return _fallback_match(control, candidate)
