"""Evolution rules: the user-supplied dynamic rule plus its fixed dispatch tags.

A rule is either out-of-place, ``f(u, p, t) -> new`` (the next state for
maps, the derivative for flows), or in-place, ``f(out, u, p, t)``, writing
into a caller-supplied buffer. The form is resolved once when the rule is
built and never inspected again.
"""

import inspect
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

import numpy as np


class TimeKind(Enum):
    DISCRETE = "discrete"
    CONTINUOUS = "continuous"


class RuleForm(Enum):
    OUT_OF_PLACE = "out_of_place"
    IN_PLACE = "in_place"


def _detect_form(fn: Callable) -> RuleForm:
    """Pick the rule form from the callable's positional arity (3 or 4)."""
    try:
        sig = inspect.signature(fn)
    except (TypeError, ValueError):
        return RuleForm.OUT_OF_PLACE
    positional = [
        p for p in sig.parameters.values()
        if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD) and p.default is p.empty
    ]
    if len(positional) == 4:
        return RuleForm.IN_PLACE
    return RuleForm.OUT_OF_PLACE


@dataclass(frozen=True)
class EvolutionRule:
    """A dynamic rule tagged with its time kind and calling form.

    Attributes:
        fn: The user callable.
        time_kind: Discrete map or continuous vector field.
        form: Out-of-place or in-place calling convention.
        name: Display name, defaults to the callable's ``__name__``.
    """

    fn: Callable
    time_kind: TimeKind
    form: RuleForm
    name: str = ""

    @classmethod
    def build(
        cls,
        fn: Callable,
        time_kind: TimeKind,
        inplace: Optional[bool] = None,
        name: Optional[str] = None,
    ) -> "EvolutionRule":
        if isinstance(fn, EvolutionRule):
            return fn
        if inplace is None:
            form = _detect_form(fn)
        else:
            form = RuleForm.IN_PLACE if inplace else RuleForm.OUT_OF_PLACE
        return cls(
            fn=fn,
            time_kind=time_kind,
            form=form,
            name=name or getattr(fn, "__name__", type(fn).__name__),
        )

    @property
    def is_discrete(self) -> bool:
        return self.time_kind is TimeKind.DISCRETE

    @property
    def inplace(self) -> bool:
        return self.form is RuleForm.IN_PLACE

    def evaluate(self, u: np.ndarray, p: Any, t: float, out: Optional[np.ndarray] = None) -> np.ndarray:
        """Evaluate the rule, returning a fresh array that does not alias ``u``.

        For in-place rules ``out`` is used as the write buffer when given;
        otherwise a new buffer is allocated.
        """
        if self.form is RuleForm.IN_PLACE:
            buf = np.zeros_like(u) if out is None or out is u else out
            self.fn(buf, u, p, t)
            return buf
        return np.array(self.fn(u, p, t), dtype=float)

    def as_rhs(self, p: Any) -> Callable[[float, np.ndarray], np.ndarray]:
        """Adapt to scipy's ``f(t, y)`` convention with ``p`` bound by reference."""
        def rhs(t: float, y: np.ndarray) -> np.ndarray:
            return self.evaluate(y, p, t)
        return rhs

    def __call__(self, *args):
        return self.fn(*args)


def discrete_rule(fn: Optional[Callable] = None, *, inplace: Optional[bool] = None, name: Optional[str] = None):
    """Wrap a map ``f(u, p, n)`` (or ``f(out, u, p, n)``) as a discrete rule.

    Usable bare (``@discrete_rule``) or with options
    (``@discrete_rule(inplace=True)``).
    """
    def wrap(f: Callable) -> EvolutionRule:
        return EvolutionRule.build(f, TimeKind.DISCRETE, inplace=inplace, name=name)
    if fn is None:
        return wrap
    return wrap(fn)


def continuous_rule(fn: Optional[Callable] = None, *, inplace: Optional[bool] = None, name: Optional[str] = None):
    """Wrap a vector field ``f(u, p, t)`` (or ``f(du, u, p, t)``) as a continuous rule."""
    def wrap(f: Callable) -> EvolutionRule:
        return EvolutionRule.build(f, TimeKind.CONTINUOUS, inplace=inplace, name=name)
    if fn is None:
        return wrap
    return wrap(fn)
