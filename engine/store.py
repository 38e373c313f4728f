"""MissionStore - canonical owner of the mission state.

Durable state (objectives, their warehouses and defender groups, players and
their lives) is what goes into snapshots. Everything else held here (live
units, slot occupancy, the spawn queue) is rebuilt from the host after a
restart.
"""
import copy
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Dict, Iterator, List, Optional, Set, Tuple

from infra.logger import get_logger

from . import lives
from .config import Cfg
from .model import (
    LifeEntry,
    LifeType,
    Objective,
    ObjectiveKind,
    Player,
    Position,
    Side,
    Slot,
    Sortie,
    SpawnRequest,
    Unit,
    UnitCategory,
)
from .snapshot import LifeRecord, ObjectiveRecord, PlayerRecord, Snapshot
from .spawn import SpawnQueue
from .world import (
    MissionError,
    MissionLayout,
    UnitNotFound,
    UnknownObjective,
    UnknownPlayer,
    UnknownSlot,
    World,
    distance,
)

log = get_logger(__name__)


class SlotAuth(Enum):
    YES = "yes"
    NO_LIVES = "no_lives"
    OBJECTIVE_HAS_NO_LOGISTICS = "objective_has_no_logistics"
    NOT_REGISTERED = "not_registered"
    OBJECTIVE_NOT_OWNED = "objective_not_owned"


class RegStatus(Enum):
    REGISTERED = "registered"
    ALREADY_ON = "already_on"
    ALREADY_REGISTERED = "already_registered"


@dataclass(frozen=True)
class Registration:
    status: RegStatus
    side: Side
    side_switches: Optional[int] = None


class SideSwitchError(MissionError):
    pass


class MissionStore:
    """Single mutable owner of objectives, players, units and slots."""

    def __init__(self, cfg: Cfg, layout: MissionLayout):
        self.cfg = cfg
        self.sortie = layout.sortie
        self.objectives: Dict[str, Objective] = layout.objectives
        self.slots: Dict[str, Slot] = layout.slots
        self.players: Dict[str, Player] = {}
        # ephemeral
        self.units: Dict[str, Unit] = {}
        self.player_in_slot: Dict[str, str] = {}
        self.spawnq = SpawnQueue()
        self.force_to_spectators: List[str] = []
        self._dirty = False

    # ------------------------------------------------------------------#
    # Construction
    # ------------------------------------------------------------------#
    @classmethod
    def init(cls, cfg: Cfg, layout: MissionLayout) -> "MissionStore":
        """Fresh mission from the layout, stocked to capacity."""
        store = cls(cfg, layout)
        if cfg.warehouse is not None:
            for obj in store.objectives.values():
                if obj.logistics and obj.owner != Side.NEUTRAL:
                    for res in cfg.warehouse.capacity:
                        obj.warehouse.set(res, store.capacity(obj, res))
        store._dirty = True
        return store

    @classmethod
    def load(cls, cfg: Cfg, layout: MissionLayout, snap: Snapshot) -> "MissionStore":
        """Layout overlaid with a saved snapshot."""
        store = cls(cfg, layout)
        for oid, rec in snap.objectives.items():
            obj = store.objectives.get(oid)
            if obj is None:
                log.warning("snapshot objective %s is not in the mission, skipping", oid)
                continue
            obj.owner = rec.owner
            obj.threatened = rec.threatened
            obj.last_repair = rec.last_repair
            for gname, alive in rec.groups_alive.items():
                if gname in obj.groups:
                    obj.groups[gname].alive = alive
            obj.warehouse.inventory = {k: max(0, v) for k, v in rec.inventory.items()}
        for ucid, rec in snap.players.items():
            store.players[ucid] = Player(
                ucid=rec.ucid,
                name=rec.name,
                side=rec.side,
                side_switches=rec.side_switches,
                lives={t: LifeEntry(r.reset_ts, r.remaining) for t, r in rec.lives.items()},
            )
        return store

    def respawn_after_load(self) -> int:
        """Queue every alive defender group. Returns how many were queued."""
        n = 0
        for obj in self.objectives.values():
            for g in obj.owner_groups():
                if g.alive:
                    self._queue_group(obj, g.name)
                    n += 1
        return n

    # ------------------------------------------------------------------#
    # Lookups
    # ------------------------------------------------------------------#
    def objective(self, oid: str) -> Objective:
        try:
            return self.objectives[oid]
        except KeyError:
            raise UnknownObjective(f"no such objective {oid}") from None

    def objective_by_name(self, name: str) -> Objective:
        for obj in self.objectives.values():
            if obj.name.lower() == name.lower() or obj.id == name:
                return obj
        raise UnknownObjective(f"no such objective {name}")

    def player(self, ucid: str) -> Optional[Player]:
        return self.players.get(ucid)

    def slot(self, sid: str) -> Slot:
        try:
            return self.slots[sid]
        except KeyError:
            raise UnknownSlot(f"no such slot {sid}") from None

    def capacity(self, obj: Objective, resource: str) -> int:
        wcfg = self.cfg.warehouse
        if wcfg is None:
            return 0
        cap = wcfg.capacity.get(resource, 0)
        if obj.kind == ObjectiveKind.LOGISTICS_HUB:
            return cap * wcfg.hub_multiplier
        return cap

    def instanced_players(self) -> Iterator[Tuple[str, Player, Unit]]:
        """Players currently in a live unit."""
        for unit in self.units.values():
            if unit.player is None:
                continue
            player = self.players.get(unit.player)
            if player is not None:
                yield unit.player, player, unit

    def mark_dirty(self) -> None:
        self._dirty = True

    # ------------------------------------------------------------------#
    # Players
    # ------------------------------------------------------------------#
    def register_player(self, ucid: str, name: str, side: Side) -> Registration:
        player = self.players.get(ucid)
        if player is not None:
            if player.side == side:
                return Registration(RegStatus.ALREADY_ON, side)
            return Registration(RegStatus.ALREADY_REGISTERED, player.side, player.side_switches)
        self.players[ucid] = Player(ucid=ucid, name=name, side=side, side_switches=self.cfg.side_switches)
        self._dirty = True
        log.info("registered player %s (%s) to %s", name, ucid, side)
        return Registration(RegStatus.REGISTERED, side)

    def sideswitch_player(self, ucid: str, side: Side) -> None:
        player = self.players.get(ucid)
        if player is None:
            raise SideSwitchError("you are not registered on any side, type blue or red to join one")
        if player.side == side:
            raise SideSwitchError(f"you are already on {side} team")
        if player.side_switches == 0:
            raise SideSwitchError("you may not switch sides")
        if player.side_switches is not None:
            player.side_switches -= 1
        player.side = side
        self._dirty = True
        log.info("player %s switched to %s, %s switches left", ucid, side, player.side_switches)

    def player_deslot(self, ucid: str) -> None:
        player = self.players.get(ucid)
        if player is not None and player.current_slot is not None:
            self.player_in_slot.pop(player.current_slot.slot, None)
            player.current_slot = None

    # ------------------------------------------------------------------#
    # Lives and slots
    # ------------------------------------------------------------------#
    def maybe_reset_lives(self, ucid: str, now: datetime) -> None:
        player = self.players.get(ucid)
        if player is None:
            raise UnknownPlayer(f"no such player {ucid}")
        if lives.maybe_reset_lives(self.cfg, player, now):
            self._dirty = True

    def try_occupy_slot(self, now: datetime, side: Side, sid: str, ucid: str) -> SlotAuth:
        slot = self.slot(sid)
        player = self.players.get(ucid)
        if player is None or player.side != slot.side or side != slot.side:
            return SlotAuth.NOT_REGISTERED
        obj = self.objective(slot.objective)
        if obj.owner != slot.side:
            return SlotAuth.OBJECTIVE_NOT_OWNED
        if not obj.logistics:
            return SlotAuth.OBJECTIVE_HAS_NO_LOGISTICS
        self.maybe_reset_lives(ucid, now)
        if lives.lives_remaining(self.cfg, player, slot.life_type) <= 0:
            return SlotAuth.NO_LIVES
        self.player_deslot(ucid)
        player.current_slot = Sortie(slot=sid)
        self.player_in_slot[sid] = ucid
        return SlotAuth.YES

    def takeoff(self, now: datetime, sid: str) -> Optional[LifeType]:
        """Consume a life for the player in ``sid``. Returns the life type taken."""
        ucid = self.player_in_slot.get(sid)
        if ucid is None:
            return None
        player = self.players[ucid]
        typ = self.slot(sid).life_type
        lives.take_life(self.cfg, player, typ, now)
        if player.current_slot is None or player.current_slot.slot != sid:
            player.current_slot = Sortie(slot=sid)
        player.current_slot.life_taken = typ
        self._dirty = True
        return typ

    def land(self, sid: str, pos: Position) -> Optional[LifeType]:
        """Return the sortie's life if the unit landed at a friendly supplied objective."""
        ucid = self.player_in_slot.get(sid)
        if ucid is None:
            return None
        player = self.players[ucid]
        sortie = player.current_slot
        if sortie is None or sortie.slot != sid or sortie.life_taken is None:
            return None
        for obj in self.objectives.values():
            if obj.owner == player.side and obj.logistics and distance(pos, obj.pos) <= obj.radius:
                typ = sortie.life_taken
                lives.return_life(self.cfg, player, typ)
                sortie.life_taken = None
                self._dirty = True
                return typ
        return None

    # ------------------------------------------------------------------#
    # Units
    # ------------------------------------------------------------------#
    def unit_born(self, unit: Unit) -> None:
        if unit.id in self.units:
            log.debug("duplicate birth for unit %s", unit.id)
            return
        for obj in self.objectives.values():
            g = obj.groups.get(unit.group)
            if g is not None and g.side == unit.side:
                unit.objective = obj.id
                break
        if unit.slot is not None:
            unit.player = self.player_in_slot.get(unit.slot)
        self.units[unit.id] = unit

    def player_entered_unit(self, unit_id: str) -> None:
        unit = self.units.get(unit_id)
        if unit is None:
            raise UnitNotFound(unit_id)
        if unit.slot is None:
            raise MissionError(f"unit {unit_id} has no slot")
        unit.player = self.player_in_slot.get(unit.slot)

    def player_left_unit(self, unit_id: str) -> None:
        unit = self.units.get(unit_id)
        if unit is None:
            raise UnitNotFound(unit_id)
        ucid = unit.player
        unit.player = None
        if ucid is not None:
            player = self.players.get(ucid)
            if player is not None and player.current_slot is not None:
                # leaving the unit ends the sortie; a life still out is forfeit
                player.current_slot.life_taken = None

    def unit_dead(self, unit_id: str, now: datetime) -> None:
        unit = self.units.pop(unit_id, None)
        if unit is None:
            return
        if unit.player is not None:
            player = self.players.get(unit.player)
            if player is not None and player.current_slot is not None:
                player.current_slot.life_taken = None
        if unit.objective is not None:
            obj = self.objectives.get(unit.objective)
            g = obj.groups.get(unit.group) if obj is not None else None
            if g is not None and g.alive:
                still_alive = any(u.group == unit.group for u in self.units.values())
                if not still_alive:
                    g.alive = False
                    self._dirty = True
                    log.info("group %s at %s destroyed", g.name, obj.name)

    def update_unit_positions(self, world: World) -> List[str]:
        """Refresh positions from the host. Returns ids of units that no longer exist."""
        dead: List[str] = []
        for unit in self.units.values():
            try:
                p = world.unit_position(unit.id)
            except UnitNotFound:
                dead.append(unit.id)
                continue
            except Exception as e:
                log.error("could not get position of unit %s: %s", unit.id, e)
                continue
            unit.pos = p.pos
            unit.alt = p.alt
            unit.heading = p.heading
            unit.speed = p.speed
        return dead

    # ------------------------------------------------------------------#
    # Objectives
    # ------------------------------------------------------------------#
    def capturable_objectives(self) -> Set[str]:
        return {oid for oid, obj in self.objectives.items() if not obj.defenders_alive()}

    def check_capture(self, now: datetime) -> List[Tuple[Side, str]]:
        """Flip capturable objectives held by a single enemy side. Returns (new owner, objective)."""
        flipped: List[Tuple[Side, str]] = []
        for oid in sorted(self.capturable_objectives()):
            obj = self.objectives[oid]
            present = {
                u.side for u in self.units.values()
                if u.category == UnitCategory.GROUND
                and u.objective is None
                and u.side != Side.NEUTRAL
                and distance(u.pos, obj.pos) <= self.cfg.capture_distance
            }
            if len(present) != 1:
                continue
            side = present.pop()
            if side == obj.owner:
                continue
            self._capture(obj, side, now)
            flipped.append((side, oid))
        return flipped

    def _capture(self, obj: Objective, side: Side, now: datetime) -> None:
        log.info("%s captured by %s from %s", obj.name, side, obj.owner)
        for sid, ucid in list(self.player_in_slot.items()):
            if self.slots[sid].objective == obj.id and self.slots[sid].side == obj.owner:
                self.force_to_spectators.append(ucid)
        obj.owner = side
        obj.threatened = False
        obj.last_repair = now
        obj.warehouse.inventory = {k: 0 for k in obj.warehouse.inventory}
        for g in obj.groups.values():
            g.alive = g.side == side
        for g in obj.owner_groups():
            self._queue_group(obj, g.name)
        self._dirty = True

    def update_threats(self) -> Tuple[List[str], List[str]]:
        """Recompute threatened flags. Returns (newly threatened, newly cleared)."""
        threatened: List[str] = []
        cleared: List[str] = []
        for oid, obj in self.objectives.items():
            if obj.owner == Side.NEUTRAL:
                continue
            enemy = obj.owner.opposite()
            near = any(
                u.side == enemy and distance(u.pos, obj.pos) <= self.cfg.threat_distance
                for u in self.units.values()
            )
            if near and not obj.threatened:
                obj.threatened = True
                threatened.append(oid)
            elif not near and obj.threatened:
                obj.threatened = False
                cleared.append(oid)
        if threatened or cleared:
            self._dirty = True
        return threatened, cleared

    def maybe_do_repairs(self, now: datetime) -> List[str]:
        """Revive one dead defender group per supplied objective, at most every repair_time."""
        repaired: List[str] = []
        for obj in self.objectives.values():
            if obj.owner == Side.NEUTRAL or not obj.logistics:
                continue
            dead = [g for g in obj.owner_groups() if not g.alive]
            if not dead:
                continue
            if obj.last_repair is not None and (now - obj.last_repair).total_seconds() < self.cfg.repair_time:
                continue
            g = dead[0]
            g.alive = True
            obj.last_repair = now
            self._queue_group(obj, g.name)
            repaired.append(obj.id)
            self._dirty = True
        return repaired

    def _queue_group(self, obj: Objective, gname: str) -> None:
        g = obj.groups[gname]
        self.spawnq.push(SpawnRequest(
            objective=obj.id,
            group=g.name,
            side=g.side,
            unit_type=g.unit_type,
            unit_names=list(g.unit_names),
            pos=obj.pos,
            category=g.category,
        ))

    def admin_reduce_inventory(self, name: str, amount: int) -> Objective:
        """Reduce every resource at the named objective by ``amount`` percent."""
        obj = self.objective_by_name(name)
        pct = max(0, min(100, amount))
        for res, n in list(obj.warehouse.inventory.items()):
            obj.warehouse.set(res, n - (n * pct) // 100)
        self._dirty = True
        return obj

    # ------------------------------------------------------------------#
    # Persistence
    # ------------------------------------------------------------------#
    def snapshot(self, now: datetime) -> Snapshot:
        objectives = {
            oid: ObjectiveRecord(
                id=oid,
                owner=obj.owner,
                threatened=obj.threatened,
                last_repair=obj.last_repair,
                groups_alive={g.name: g.alive for g in obj.groups.values()},
                inventory=copy.deepcopy(obj.warehouse.inventory),
            )
            for oid, obj in self.objectives.items()
        }
        players = {
            ucid: PlayerRecord(
                ucid=p.ucid,
                name=p.name,
                side=p.side,
                side_switches=p.side_switches,
                lives={t: LifeRecord(reset_ts=e.reset_ts, remaining=e.remaining) for t, e in p.lives.items()},
            )
            for ucid, p in self.players.items()
        }
        return Snapshot(taken_at=now, objectives=objectives, players=players)

    def maybe_snapshot(self, now: datetime) -> Optional[Snapshot]:
        """A snapshot if durable state changed since the last one, else None."""
        if not self._dirty:
            return None
        self._dirty = False
        return self.snapshot(now)
