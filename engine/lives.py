"""Life pools and the takeoff/landing bookkeeping that drives them.

Lives are reset lazily: an entry whose reset window has elapsed is simply
dropped the next time the player's lives are looked at, and a missing entry
means the pool is full.
"""
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Set

from .config import Cfg
from .model import LifeEntry, LifeType, Player

LANDING_GRACE = timedelta(seconds=10)


def maybe_reset_lives(cfg: Cfg, player: Player, now: datetime) -> bool:
    """Drop every life entry whose reset window has elapsed. Returns True if any was dropped."""
    expired = [
        typ for typ, entry in player.lives.items()
        if now - entry.reset_ts >= timedelta(seconds=cfg.reset_after(typ))
    ]
    for typ in expired:
        del player.lives[typ]
    return bool(expired)


def lives_remaining(cfg: Cfg, player: Player, typ: LifeType) -> int:
    entry = player.lives.get(typ)
    if entry is None:
        return cfg.max_lives(typ)
    return entry.remaining


def take_life(cfg: Cfg, player: Player, typ: LifeType, now: datetime) -> int:
    """Consume one life of ``typ``; the pool's reset window starts on first use."""
    maybe_reset_lives(cfg, player, now)
    entry = player.lives.get(typ)
    if entry is None:
        entry = LifeEntry(reset_ts=now, remaining=cfg.max_lives(typ))
        player.lives[typ] = entry
    entry.remaining = max(0, entry.remaining - 1)
    return entry.remaining


def return_life(cfg: Cfg, player: Player, typ: LifeType) -> int:
    entry = player.lives.get(typ)
    if entry is None:
        return cfg.max_lives(typ)
    entry.remaining = min(cfg.max_lives(typ), entry.remaining + 1)
    return entry.remaining


def lives_status(cfg: Cfg, player: Player, now: datetime, typ: Optional[LifeType] = None) -> str:
    """Human readable life counts, one line per life type."""
    msg = ""
    for t, (n, reset_after) in cfg.default_lives.items():
        if typ is not None and t != typ:
            continue
        entry = player.lives.get(t)
        if entry is None:
            msg += f"{t} {n}/{n}\n"
            continue
        left = timedelta(seconds=reset_after) - (now - entry.reset_ts)
        secs = max(0, int(left.total_seconds()))
        hrs, rem = divmod(secs, 3600)
        mins, secs = divmod(rem, 60)
        msg += f"{t} {entry.remaining}/{n} resetting in {hrs:02}:{mins:02}:{secs:02}\n"
    return msg


class FlightTracker:
    """Airborne and recently landed unit sets.

    A unit is in at most one of the two. Landing moves it from airborne to
    recently landed; taking off again inside the grace window moves it back
    without counting as a new sortie.
    """

    def __init__(self):
        self.airborne: Set[str] = set()
        self.recently_landed: Dict[str, datetime] = {}

    def takeoff(self, unit_id: str) -> bool:
        """Record a takeoff. True when it starts a new sortie and should cost a life."""
        newly_airborne = unit_id not in self.airborne
        self.airborne.add(unit_id)
        touch_and_go = self.recently_landed.pop(unit_id, None) is not None
        return newly_airborne and not touch_and_go

    def land(self, unit_id: str, now: datetime) -> bool:
        if unit_id not in self.airborne:
            return False
        self.airborne.discard(unit_id)
        self.recently_landed[unit_id] = now
        return True

    def killed(self, unit_id: str) -> None:
        self.airborne.discard(unit_id)
        self.recently_landed.pop(unit_id, None)

    def landed_for_grace(self, now: datetime) -> List[str]:
        return [
            uid for uid, ts in self.recently_landed.items()
            if now - ts >= LANDING_GRACE
        ]

    def forget(self, unit_id: str) -> None:
        self.recently_landed.pop(unit_id, None)
