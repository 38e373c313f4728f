"""Early warning radar tracks and BRAA contact reports.

Map coordinates are x east, y north, in meters. Headings and bearings are
degrees true.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, List, Tuple

import numpy as np

from .config import Cfg
from .model import Side, Track, Unit
from .store import MissionStore
from .world import UnitNotFound, World

HEADER = "BRG   RNG   ALT    ASPECT"
M_PER_NM = 1852.0
FT_PER_M = 3.28084


@dataclass
class Braa:
    bearing: int  # degrees
    range: int  # nautical miles
    altitude: int  # feet
    aspect: str

    def __str__(self) -> str:
        return f"{self.bearing:03}   {self.range:<5} {self.altitude:<6} {self.aspect}"


def aspect_of(target_heading: float, bearing_to_target: float) -> str:
    """Hot when the target points at us, cold when it points away."""
    back_bearing = (bearing_to_target + 180.0) % 360.0
    off = abs((target_heading - back_bearing + 180.0) % 360.0 - 180.0)
    if off <= 45.0:
        return "hot"
    if off <= 135.0:
        return "flank"
    return "cold"


class Ewr:
    """Per side radar picture, rebuilt from scratch on every update."""

    def __init__(self):
        self.tracks: Dict[Side, Dict[str, Track]] = {Side.RED: {}, Side.BLUE: {}}

    def update_tracks(self, store: MissionStore, now: datetime) -> None:
        cfg = store.cfg
        units = list(store.units.values())
        for side in (Side.RED, Side.BLUE):
            detectors = [u for u in units if u.side == side and u.unit_type in cfg.ewr_types]
            targets = [
                u for u in units
                if u.side == side.opposite() and u.is_air() and u.alt >= cfg.ewr_min_altitude
            ]
            self.tracks[side] = self._detect(cfg, detectors, targets, side, now)

    @staticmethod
    def _detect(cfg: Cfg, detectors: List[Unit], targets: List[Unit], side: Side, now: datetime) -> Dict[str, Track]:
        if not detectors or not targets:
            return {}
        d = np.array([u.pos for u in detectors], dtype=float)
        t = np.array([u.pos for u in targets], dtype=float)
        dist = np.linalg.norm(t[:, None, :] - d[None, :, :], axis=2)
        seen = (dist <= cfg.ewr_range).any(axis=1)
        return {
            u.id: Track(
                unit_id=u.id,
                side=side,
                pos=u.pos,
                alt=u.alt,
                heading=u.heading,
                speed=u.speed,
                last_seen=now,
            )
            for u, visible in zip(targets, seen)
            if visible
        }

    def refresh_positions(self, world: World) -> List[str]:
        """Move every track to its unit's current position. Returns ids of units that are gone."""
        dead: List[str] = []
        for side, tracks in self.tracks.items():
            for uid in list(tracks):
                try:
                    p = world.unit_position(uid)
                except UnitNotFound:
                    del tracks[uid]
                    if uid not in dead:
                        dead.append(uid)
                    continue
                t = tracks[uid]
                t.pos, t.alt, t.heading, t.speed = p.pos, p.alt, p.heading, p.speed
        return dead

    def where_chicken(self, cfg: Cfg, side: Side, unit: Unit) -> List[Braa]:
        """BRAA calls from ``unit`` to every track its side holds, nearest first."""
        tracks = list(self.tracks.get(side, {}).values())
        if not tracks:
            return []
        pos = np.array(unit.pos, dtype=float)
        tp = np.array([t.pos for t in tracks], dtype=float)
        delta = tp - pos
        ranges = np.hypot(delta[:, 0], delta[:, 1])
        bearings = np.degrees(np.arctan2(delta[:, 0], delta[:, 1])) % 360.0
        order = np.argsort(ranges)[: cfg.max_report_contacts]
        reports = []
        for i in order:
            tr = tracks[i]
            reports.append(Braa(
                bearing=int(round(bearings[i])) % 360,
                range=int(round(ranges[i] / M_PER_NM)),
                altitude=int(round(tr.alt * FT_PER_M, -2)),
                aspect=aspect_of(tr.heading, float(bearings[i])),
            ))
        return reports


def contact_reports(ewr: Ewr, store: MissionStore) -> List[Tuple[str, str]]:
    """(unit id, report text) for every instanced player with something to report."""
    out = []
    for _ucid, player, unit in store.instanced_players():
        braa = ewr.where_chicken(store.cfg, player.side, unit)
        if not braa:
            continue
        lines = ["Bandits BRAA", HEADER] + [str(b) for b in braa]
        out.append((unit.id, "\n".join(lines) + "\n"))
    return out
