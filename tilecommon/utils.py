from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import numpy as np


def iso_now_ms() -> str:
    """UTC ISO-8601 timestamp with millisecond precision."""
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


def js_round(v):
    """
    Round half up (Math.round semantics) for scalars or arrays.
    np.round() rounds half to even, which shifts pixel indices on exact .5 values.
    """
    return np.floor(np.asarray(v, dtype=float) + 0.5)


@dataclass(slots=True)
class RunningStats:
    """
    Online mean/std using Welford's algorithm.
    """
    n: int = 0
    mean: float = 0.0
    m2: float = 0.0
    max: float = 0.0

    def add(self, x: float) -> None:
        self.n += 1
        d = x - self.mean
        self.mean += d / self.n
        d2 = x - self.mean
        self.m2 += d * d2
        self.max = x if self.n == 1 else max(self.max, x)

    @property
    def variance(self) -> float:
        return self.m2 / (self.n - 1) if self.n > 1 else 0.0

    @property
    def std(self) -> float:
        return self.variance ** 0.5

    def to_dict(self) -> dict:
        return {"n": self.n, "mean": round(self.mean, 3), "std": round(self.std, 3), "max": round(self.max, 3)}
