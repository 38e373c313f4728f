"""Versioned on-disk form of the durable mission state.

A ``Snapshot`` is frozen and holds only copies, so once the store hands it
out it can cross to the persistence thread without sharing anything mutable.
"""
import os
from datetime import datetime
from pathlib import Path
from typing import Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from .model import LifeType, Side

SNAPSHOT_VERSION = 1


class Frozen(BaseModel):
    model_config = ConfigDict(frozen=True)


class LifeRecord(Frozen):
    reset_ts: datetime
    remaining: int = Field(ge=0)


class PlayerRecord(Frozen):
    ucid: str
    name: str
    side: Side
    side_switches: Optional[int] = None
    lives: Dict[LifeType, LifeRecord] = Field(default_factory=dict)


class ObjectiveRecord(Frozen):
    id: str
    owner: Side
    threatened: bool = False
    last_repair: Optional[datetime] = None
    groups_alive: Dict[str, bool] = Field(default_factory=dict)
    inventory: Dict[str, int] = Field(default_factory=dict)


class Snapshot(Frozen):
    version: int = SNAPSHOT_VERSION
    taken_at: datetime
    objectives: Dict[str, ObjectiveRecord] = Field(default_factory=dict)
    players: Dict[str, PlayerRecord] = Field(default_factory=dict)


class SnapshotVersionError(ValueError):
    pass


def write(path: Path, snap: Snapshot) -> None:
    """Write ``snap`` atomically: a temp file beside ``path`` is renamed over it."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp = path.with_name(path.name + ".tmp")
    with open(tmp, "w", encoding="utf-8") as f:
        f.write(snap.model_dump_json(indent=1))
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp, path)


def read(path: Path) -> Snapshot:
    snap = Snapshot.model_validate_json(path.read_text(encoding="utf-8"))
    if snap.version != SNAPSHOT_VERSION:
        raise SnapshotVersionError(f"unsupported snapshot version {snap.version} in {path}")
    return snap
