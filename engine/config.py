"""Mission configuration.

The configuration lives next to the snapshot file as ``<snapshot>.cfg.json``
and is only consulted when no snapshot exists yet, or to refresh the
ephemeral settings after a load.
"""
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, Field

from infra.logger import get_logger

from .model import LifeType

log = get_logger(__name__)


class WarehouseCfg(BaseModel):
    """Logistics cadence and supply amounts."""
    tick: int = 10  # minutes between logistics ticks
    ticks_per_delivery: int = 3  # every Nth tick delivers production
    capacity: Dict[str, int] = Field(default_factory=lambda: {"fuel": 100, "weapons": 100, "aircraft": 20})
    production: Dict[str, int] = Field(default_factory=lambda: {"fuel": 50, "weapons": 40, "aircraft": 6})
    hub_multiplier: int = 4  # hubs hold this many times the normal capacity
    supply_transfer_size: int = 10  # max amount per resource moved by an incremental delivery


class Cfg(BaseModel):
    admins: List[str] = Field(default_factory=list)
    default_lives: Dict[LifeType, Tuple[int, int]] = Field(
        default_factory=lambda: {
            LifeType.STANDARD: (3, 21600),
            LifeType.INTERCEPT: (4, 21600),
            LifeType.ATTACK: (2, 21600),
            LifeType.LOGISTICS: (6, 21600),
            LifeType.RECON: (4, 21600),
        }
    )
    side_switches: Optional[int] = 1
    slow_timed_events_freq: int = 10  # seconds
    threat_distance: float = 20000.0
    capture_distance: float = 2000.0
    ewr_range: float = 150000.0
    ewr_min_altitude: float = 60.0
    ewr_types: List[str] = Field(default_factory=lambda: ["1L13 EWR", "55G6 EWR", "FPS-117"])
    repair_time: int = 1800  # seconds between defender repairs
    spawn_per_tick: int = 4
    max_report_contacts: int = 10
    warehouse: Optional[WarehouseCfg] = Field(default_factory=WarehouseCfg)

    def max_lives(self, typ: LifeType) -> int:
        n, _ = self.default_lives.get(typ, (0, 0))
        return n

    def reset_after(self, typ: LifeType) -> int:
        _, secs = self.default_lives.get(typ, (0, 0))
        return secs

    @staticmethod
    def path_for(snapshot_path: Path) -> Path:
        return snapshot_path.with_name(snapshot_path.name + ".cfg.json")

    @classmethod
    def load(cls, snapshot_path: Path) -> "Cfg":
        """Load the config beside ``snapshot_path``, falling back to defaults."""
        path = cls.path_for(snapshot_path)
        if not path.exists():
            log.warning("no mission config at %s, using defaults", path)
            return cls()
        log.info("loading mission config from %s", path)
        return cls.model_validate_json(path.read_text(encoding="utf-8"))
