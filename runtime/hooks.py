"""Handlers for notifications pushed by the host.

Each handler takes the mission context explicitly. Deaths discovered
anywhere (events, position refresh, track refresh) go through unit_killed.
"""
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Union

from engine import lives
from engine.commands import (
    Admin,
    AdminHelp,
    ADMIN_HELP,
    CommandParseError,
    JoinSide,
    Lives,
    SwitchSide,
    parse_chat,
)
from engine.model import LifeType, Side, Unit
from engine.store import RegStatus, SideSwitchError, SlotAuth
from engine.world import MissionError, UnitNotFound, World, is_spectator
from infra.logger import get_logger

from .context import MissionContext, PlayerInfo

log = get_logger(__name__)


@dataclass(frozen=True)
class Birth:
    unit: Unit


@dataclass(frozen=True)
class PlayerEnterUnit:
    unit_id: str


@dataclass(frozen=True)
class PlayerLeaveUnit:
    unit_id: str


@dataclass(frozen=True)
class Dead:
    """Dead, unit lost, pilot dead and ejection all end the unit."""
    unit_id: str
    reason: str = "dead"


@dataclass(frozen=True)
class Takeoff:
    unit_id: str


@dataclass(frozen=True)
class Land:
    unit_id: str


HostEvent = Union[Birth, PlayerEnterUnit, PlayerLeaveUnit, Dead, Takeoff, Land]


def unit_killed(ctx: MissionContext, unit_id: str, now: datetime) -> None:
    ctx.flights.killed(unit_id)
    ctx.db.unit_dead(unit_id, now)


def message_life(ctx: MissionContext, unit_id: str, slot: str, typ: Optional[LifeType], prefix: str, now: datetime) -> None:
    ucid = ctx.db.player_in_slot.get(slot)
    if ucid is None:
        raise MissionError(f"no player in slot {slot}")
    ctx.db.maybe_reset_lives(ucid, now)
    player = ctx.db.players[ucid]
    ctx.msgs.panel_to_unit(10, False, unit_id, prefix + lives.lives_status(ctx.db.cfg, player, now, typ))


def on_event(ctx: MissionContext, ev: HostEvent, now: datetime) -> None:
    db = ctx.db
    if isinstance(ev, Birth):
        db.unit_born(ev.unit)
    elif isinstance(ev, PlayerEnterUnit):
        db.player_entered_unit(ev.unit_id)
    elif isinstance(ev, PlayerLeaveUnit):
        db.player_left_unit(ev.unit_id)
    elif isinstance(ev, Dead):
        unit_killed(ctx, ev.unit_id, now)
    elif isinstance(ev, Takeoff):
        unit = db.units.get(ev.unit_id)
        if unit is None:
            raise UnitNotFound(ev.unit_id)
        if ctx.flights.takeoff(unit.id) and unit.slot is not None:
            typ = db.takeoff(now, unit.slot)
            if typ is not None:
                message_life(ctx, unit.id, unit.slot, typ, "life taken\n", now)
    elif isinstance(ev, Land):
        ctx.flights.land(ev.unit_id, now)
    else:
        log.warning("unhandled event %r", ev)


def return_lives(ctx: MissionContext, world: World, now: datetime) -> int:
    """Credit lives for units landed longer than the grace period. Returns how many."""
    db = ctx.db
    returned = 0
    for uid in ctx.flights.landed_for_grace(now):
        unit = db.units.get(uid)
        if unit is None or unit.slot is None:
            ctx.flights.forget(uid)
            continue
        try:
            pos = world.unit_position(uid).pos
        except Exception as e:
            log.debug("dropping landed unit %s: %s", uid, e)
            ctx.flights.forget(uid)
            continue
        typ = db.land(unit.slot, pos)
        if typ is None:
            continue
        ctx.flights.forget(uid)
        returned += 1
        try:
            message_life(ctx, uid, unit.slot, typ, "life returned\n", now)
        except MissionError as e:
            log.error("failed to send life returned message to %s: %s", unit.slot, e)
    return returned


def on_player_try_connect(ctx: MissionContext, addr: str, name: str, ucid: str, player_id: int) -> bool:
    log.info("player connecting addr: %s, name: %s, ucid: %s, id: %s", addr, name, ucid, player_id)
    ctx.id_by_ucid[ucid] = player_id
    ctx.info_by_player_id[player_id] = PlayerInfo(name=name, ucid=ucid)
    return True


def on_player_disconnect(ctx: MissionContext, player_id: int) -> None:
    ifo = ctx.info_by_player_id.pop(player_id, None)
    if ifo is None:
        return
    if ctx.id_by_ucid.get(ifo.ucid) == player_id:
        del ctx.id_by_ucid[ifo.ucid]
    if ctx.store is not None:
        ctx.store.player_deslot(ifo.ucid)


def register_player(ctx: MissionContext, player_id: int, side: Side) -> None:
    ifo = ctx.player_info(player_id)
    reg = ctx.db.register_player(ifo.ucid, ifo.name, side)
    if reg.status == RegStatus.REGISTERED:
        ctx.msgs.chat(player_id, f"Welcome to the {side} team. You may only occupy slots belonging to your team. Good luck!")
        ctx.msgs.chat(None, f"{ifo.name} has joined {side} team")
    elif reg.status == RegStatus.ALREADY_ON:
        ctx.msgs.chat(player_id, f"you are already on {side} team!")
    else:
        orig = reg.side
        if reg.side_switches is None:
            msg = f"You are already on the {orig} team. You may switch sides by typing -switch {side}."
        elif reg.side_switches == 0:
            msg = f"You are already on {orig} team, and you may not switch sides."
        elif reg.side_switches == 1:
            msg = f"You are already on {orig} team. You may switch sides 1 time by typing -switch {side}."
        else:
            msg = f"You are already on {orig} team. You may switch sides {reg.side_switches} times. Type -switch {side}."
        ctx.msgs.chat(player_id, msg)


def sideswitch_player(ctx: MissionContext, player_id: int, side: Side, slot: str) -> None:
    ifo = ctx.player_info(player_id)
    player = ctx.db.player(ifo.ucid)
    if not is_spectator(slot) or (player is not None and player.current_slot is not None):
        raise SideSwitchError("you must be in spectators to switch sides")
    ctx.db.sideswitch_player(ifo.ucid, side)
    ctx.msgs.chat(None, f"{ifo.name} has switched to {side}")


def lives_command(ctx: MissionContext, player_id: int, now: datetime) -> None:
    ifo = ctx.player_info(player_id)
    ctx.db.maybe_reset_lives(ifo.ucid, now)
    player = ctx.db.players[ifo.ucid]
    ctx.msgs.chat(player_id, lives.lives_status(ctx.db.cfg, player, now))


def is_admin(ctx: MissionContext, player_id: int) -> bool:
    ifo = ctx.info_by_player_id.get(player_id)
    return ifo is not None and ifo.ucid in ctx.db.cfg.admins


def admin_command(ctx: MissionContext, player_id: int, cmd: Admin) -> None:
    ifo = ctx.info_by_player_id[player_id]
    if isinstance(cmd.cmd, AdminHelp):
        ctx.msgs.chat(player_id, ADMIN_HELP)
        return
    log.info("queueing admin command %r from %s", cmd.cmd, ifo)
    ctx.admin_commands.append((player_id, cmd.cmd))


def on_player_try_send_chat(ctx: MissionContext, player_id: int, msg: str, slot: str, now: datetime) -> str:
    """Handle a chat line. Commands are swallowed (""), everything else passes through.

    Errors are replied to the sender only.
    """
    try:
        if msg.strip().lower().startswith("-admin") and not is_admin(ctx, player_id):
            log.warning("ignoring admin command from non admin %s", player_id)
            return ""
        cmd = parse_chat(msg)
        if cmd is None:
            return msg
        if isinstance(cmd, JoinSide):
            register_player(ctx, player_id, cmd.side)
        elif isinstance(cmd, SwitchSide):
            sideswitch_player(ctx, player_id, cmd.side, slot)
        elif isinstance(cmd, Lives):
            lives_command(ctx, player_id, now)
        elif isinstance(cmd, Admin):
            admin_command(ctx, player_id, cmd)
    except (CommandParseError, MissionError) as e:
        ctx.msgs.chat(player_id, str(e))
    return ""


def on_player_try_change_slot(ctx: MissionContext, player_id: int, side: Side, slot: str, now: datetime) -> Optional[bool]:
    """None lets the change through, False denies it. Any error denies."""
    if is_spectator(slot):
        ifo = ctx.info_by_player_id.get(player_id)
        if ifo is not None and ctx.store is not None:
            ctx.store.player_deslot(ifo.ucid)
        return None
    try:
        ifo = ctx.player_info(player_id)
        auth = ctx.db.try_occupy_slot(now, side, slot, ifo.ucid)
    except Exception as e:
        log.error("error checking slot %s for player %s: %s", slot, player_id, e)
        return False
    if auth == SlotAuth.YES:
        return None
    if auth == SlotAuth.OBJECTIVE_HAS_NO_LOGISTICS:
        ctx.msgs.chat(player_id, "Objective is capturable")
    elif auth == SlotAuth.NOT_REGISTERED:
        ctx.msgs.chat(player_id, f"You must join {side} to use this slot. Type {str(side).lower()} in chat.")
    elif auth == SlotAuth.OBJECTIVE_NOT_OWNED:
        ctx.msgs.chat(player_id, f"{side} does not own the objective associated with this slot")
    elif auth == SlotAuth.NO_LIVES:
        ctx.msgs.chat(player_id, "You have no lives remaining for this slot")
    return False
