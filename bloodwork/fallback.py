"""Small result type for chaining fallible strategies.

Each strategy is wrapped into an ``Outcome`` instead of nesting try/except
blocks, so a chain like "structured LLM call -> text-mode LLM call ->
heuristic" reads as a flat list and every failure is kept for diagnostics.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Iterable


@dataclass(frozen=True)
class Outcome:
    value: Any = None
    error: BaseException | None = None
    label: str = ""

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class FallbackChain:
    """Result of running a chain: the winning outcome plus every failure before it."""

    outcome: Outcome
    failures: list[Outcome] = field(default_factory=list)

    def describe_failures(self) -> str:
        return " | ".join(f"{item.label}: {item.error}" for item in self.failures) or "no attempts"


def attempt(label: str, fn: Callable[..., Any], *args: Any, catch: tuple[type[BaseException], ...] = (Exception,), **kwargs: Any) -> Outcome:
    """Run ``fn`` and capture either its return value or one of the ``catch`` exceptions."""
    try:
        return Outcome(value=fn(*args, **kwargs), label=label)
    except catch as exc:
        return Outcome(error=exc, label=label)


def first_success(steps: Iterable[Callable[[], Outcome]]) -> FallbackChain:
    """Evaluate ``steps`` lazily and stop at the first successful outcome."""
    failures: list[Outcome] = []
    for step in steps:
        outcome = step()
        if outcome.ok:
            return FallbackChain(outcome=outcome, failures=failures)
        failures.append(outcome)
    last = failures[-1] if failures else Outcome(error=RuntimeError("no strategies were attempted"))
    return FallbackChain(outcome=last, failures=failures)
