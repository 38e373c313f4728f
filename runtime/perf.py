import time
from dataclasses import dataclass
from typing import Dict


@dataclass
class StageStats:
    count: int = 0
    total_s: float = 0.0
    max_s: float = 0.0

    def record(self, elapsed: float) -> None:
        self.count += 1
        self.total_s += elapsed
        self.max_s = max(self.max_s, elapsed)


class Perf:
    """Wall time spent in each tick stage and host hook."""

    def __init__(self):
        self.stages: Dict[str, StageStats] = {}

    def record(self, stage: str, start: float) -> None:
        """Record the time since ``start`` (a time.perf_counter() value)."""
        self.stages.setdefault(stage, StageStats()).record(time.perf_counter() - start)

    def summary(self) -> Dict[str, Dict[str, float]]:
        """Plain copy of the stats, safe to hand to another thread."""
        return {
            name: {
                "count": s.count,
                "mean_ms": (s.total_s / s.count) * 1000.0 if s.count else 0.0,
                "max_ms": s.max_s * 1000.0,
            }
            for name, s in self.stages.items()
        }
