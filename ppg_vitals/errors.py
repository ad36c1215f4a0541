"""
Exceptions and the consecutive-failure budget shared by the estimators.

Per-sample update calls never let these escape: guards raise
:class:`DegenerateInputError`, the owning component catches it, falls back to
its sentinel value and charges a :class:`FailureBudget`.
"""

from __future__ import annotations


class DegenerateInputError(ValueError):
    """Input that cannot be used: zero DC, non-finite data, zero denominator."""


class VitalsFormatError(ValueError):
    """Malformed pressure or arrhythmia-status string."""


class FailureBudget:
    """
    Count consecutive failed updates.

    :meth:`charge` returns *True* once ``limit`` consecutive failures have
    been recorded; the caller is then expected to reset itself.  Any
    successful update calls :meth:`clear`.
    """

    def __init__(self, limit: int = 5) -> None:
        self.limit = limit
        self._count = 0

    @property
    def count(self) -> int:
        return self._count

    def charge(self) -> bool:
        self._count += 1
        if self._count >= self.limit:
            self._count = 0
            return True
        return False

    def clear(self) -> None:
        self._count = 0
