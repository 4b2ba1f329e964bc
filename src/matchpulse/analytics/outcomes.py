"""Tagged stage outcomes for the analytical pipeline.

Every stage of the pipeline returns a structurally valid value, even when the
input history is too short or the numbers degenerate.  :class:`StageOutcome`
records *why* a neutral default was substituted so that callers can tell
"not enough data yet" apart from a genuine bug.
"""

from __future__ import annotations

import dataclasses
import enum
import logging
from typing import Callable, Generic, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


class OutcomeKind(str, enum.Enum):
    """Classification of a stage computation."""

    OK = "ok"
    INSUFFICIENT = "insufficient"
    DEGENERATE = "degenerate"
    UNEXPECTED = "unexpected"


class DegenerateInputError(ArithmeticError):
    """Raised inside a stage when the numbers admit no meaningful estimate."""


@dataclasses.dataclass(frozen=True, slots=True)
class StageOutcome(Generic[T]):
    """Value produced by a stage together with how it was obtained."""

    kind: OutcomeKind
    value: T
    reason: str = ""
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.kind is OutcomeKind.OK

    @property
    def is_fallback(self) -> bool:
        return self.kind is not OutcomeKind.OK

    @property
    def is_unexpected(self) -> bool:
        return self.kind is OutcomeKind.UNEXPECTED

    @classmethod
    def success(cls, value: T) -> "StageOutcome[T]":
        return cls(OutcomeKind.OK, value)

    @classmethod
    def insufficient(cls, value: T, reason: str) -> "StageOutcome[T]":
        return cls(OutcomeKind.INSUFFICIENT, value, reason)

    @classmethod
    def degenerate(cls, value: T, reason: str) -> "StageOutcome[T]":
        return cls(OutcomeKind.DEGENERATE, value, reason)

    @classmethod
    def unexpected(cls, value: T, error: BaseException) -> "StageOutcome[T]":
        return cls(OutcomeKind.UNEXPECTED, value, f"{type(error).__name__}: {error}", error)


def run_stage(
    stage: str,
    compute: Callable[[], T],
    fallback: Callable[[], T],
) -> StageOutcome[T]:
    """Execute ``compute`` and map failures onto tagged fallbacks.

    :class:`DegenerateInputError` is an expected condition and only logged at
    debug level.  Any other exception is unexpected: it is logged with its
    traceback and carried on the outcome so it can be surfaced to operators.
    """

    try:
        return StageOutcome.success(compute())
    except DegenerateInputError as exc:
        logger.debug("%s degenerate input: %s", stage, exc)
        return StageOutcome.degenerate(fallback(), str(exc))
    except Exception as exc:
        logger.exception("%s failed unexpectedly", stage)
        return StageOutcome.unexpected(fallback(), exc)


__all__ = [
    "DegenerateInputError",
    "OutcomeKind",
    "StageOutcome",
    "run_stage",
]
