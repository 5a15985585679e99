from __future__ import annotations

from dataclasses import dataclass
from time import monotonic

from pdfchat.errors import DeadlineExceeded


@dataclass(frozen=True)
class Deadline:
    """Absolute point in (monotonic) time by which a whole operation must finish."""

    expires_at: float
    label: str = "operation"

    @classmethod
    def after(cls, seconds: float, *, label: str = "operation") -> Deadline:
        return cls(expires_at=monotonic() + seconds, label=label)

    def remaining(self) -> float:
        return self.expires_at - monotonic()

    def check(self) -> None:
        if self.remaining() <= 0:
            raise DeadlineExceeded(f"{self.label} deadline exceeded")

    def timeout(self, cap: float) -> float:
        """Per-call timeout: the smaller of ``cap`` and the time left."""
        remaining = self.remaining()
        if remaining <= 0:
            raise DeadlineExceeded(f"{self.label} deadline exceeded")
        return min(cap, remaining)
