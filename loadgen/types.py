from __future__ import annotations

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class Stage:
    """Hold `concurrency` closed-loop workers for `duration_s` seconds."""

    concurrency: int
    duration_s: float


@dataclass
class Sample:
    """Outcome of one request. `status` is 0 on a network error or timeout."""

    status: int
    elapsed_ms: float
    token_id: Optional[str] = None

    @property
    def net_error(self) -> bool:
        return self.status == 0


class LoadError(RuntimeError):
    """Raised when the load run cannot proceed (e.g., the server never answers /ping)."""


class ListTokensError(LoadError):
    """Raised when the final token listing fails after retries."""


def parse_stages(text: str) -> list[Stage]:
    """Parse `"10:5,50:10"` into stages of (concurrency, seconds)."""
    stages: list[Stage] = []
    for chunk in text.split(","):
        chunk = chunk.strip()
        if not chunk:
            continue
        try:
            users, _, seconds = chunk.partition(":")
            stage = Stage(concurrency=int(users), duration_s=float(seconds))
        except ValueError as e:
            raise ValueError(f"invalid stage {chunk!r}, expected CONCURRENCY:SECONDS") from e
        if stage.concurrency < 1 or stage.duration_s <= 0:
            raise ValueError(f"invalid stage {chunk!r}, values must be positive")
        stages.append(stage)
    if not stages:
        raise ValueError("at least one stage is required")
    return stages
