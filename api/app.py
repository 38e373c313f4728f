from fastapi import FastAPI, HTTPException

from engine.model import Side
from engine.world import MarkPanel, UnitPosition
from infra.logger import configure_logging, get_logger
from runtime import hooks
from runtime.runner import MissionRunner
from .host import HostWorld, message_to_dict
from .schemas import (
    AllowResponse,
    BirthIn,
    ChatIn,
    ChatResponse,
    ConnectIn,
    DisconnectIn,
    EventIn,
    InventoryIn,
    LayoutIn,
    MarksIn,
    MessagesResponse,
    MissionEndIn,
    PositionsIn,
    SlotChangeIn,
)
from .settings import settings

log = get_logger(__name__)

app = FastAPI(title="Mission State Engine")
runner: MissionRunner | None = None
world: HostWorld | None = None

_UNIT_EVENTS = {
    "player_enter_unit": hooks.PlayerEnterUnit,
    "player_leave_unit": hooks.PlayerLeaveUnit,
    "takeoff": hooks.Takeoff,
    "land": hooks.Land,
}


def _runner() -> MissionRunner:
    if not runner:
        raise HTTPException(400, "Mission engine not started")
    return runner


def _world() -> HostWorld:
    if not world:
        raise HTTPException(400, "Mission engine not started")
    return world


@app.get("/")
async def root():
    return {"message": "Mission State Engine API - visit /docs for API documentation"}


@app.on_event("startup")
async def startup():
    """Configure logging and start the tick loop."""
    global runner, world
    configure_logging(settings.log_level, json=settings.log_json, logfile=settings.log_file)
    world = HostWorld()
    runner = MissionRunner(
        world,
        settings.write_dir,
        interval_s=settings.tick_interval_s,
        failed_interval_s=settings.failed_interval_s,
        outbox_size=settings.outbox_size,
    )
    await runner.start()


@app.on_event("shutdown")
async def shutdown():
    """Stop the tick loop and the persistence worker."""
    global runner
    if runner:
        await runner.stop()


@app.post("/hooks/mission-load-end")
async def mission_load_end(layout: LayoutIn):
    """Receive the mission index; initialization happens on the next tick."""
    _world().set_layout(layout.to_layout())
    _runner().on_mission_load_end()
    return {"sortie": layout.sortie, "objectives": len(layout.objectives), "slots": len(layout.slots)}


@app.post("/hooks/mission-end")
async def mission_end():
    _runner().on_mission_end()
    _world().reset()
    return {"state": _runner().state.value}


@app.post("/hooks/connect", response_model=AllowResponse)
async def connect(req: ConnectIn):
    allow = _runner().on_player_try_connect(req.addr, req.name, req.ucid, req.player_id)
    return AllowResponse(allow=allow)


@app.post("/hooks/disconnect")
async def disconnect(req: DisconnectIn):
    _runner().on_player_disconnect(req.player_id)
    return {"ok": True}


@app.post("/hooks/chat", response_model=ChatResponse)
async def chat(req: ChatIn):
    """Returns the text to broadcast; empty when the line was a command."""
    return ChatResponse(text=_runner().on_player_try_send_chat(req.player_id, req.msg, req.slot))


@app.post("/hooks/slot-change", response_model=AllowResponse)
async def slot_change(req: SlotChangeIn):
    """Deny on any error so a broken mission never lets players into slots."""
    try:
        res = _runner().on_player_try_change_slot(req.player_id, Side.parse(req.side), req.slot)
    except HTTPException:
        raise
    except Exception as e:
        log.error("slot change for %s failed: %s", req.player_id, e)
        return AllowResponse(allow=False)
    return AllowResponse(allow=res is None)


@app.post("/events")
async def post_event(ev: EventIn):
    """Forward a simulation event to the mission."""
    r = _runner()
    if isinstance(ev, MissionEndIn):
        r.on_mission_end()
        _world().reset()
        return {"handled": ev.type}
    if isinstance(ev, BirthIn):
        _world().update_positions(
            {ev.unit_id: UnitPosition(ev.x, ev.y, ev.alt, ev.heading, ev.speed)}, []
        )
        r.on_event(hooks.Birth(ev.to_unit()))
    elif ev.type in _UNIT_EVENTS:
        r.on_event(_UNIT_EVENTS[ev.type](ev.unit_id))
    else:
        r.on_event(hooks.Dead(ev.unit_id, ev.type))
    return {"handled": ev.type}


@app.post("/host/positions")
async def post_positions(req: PositionsIn):
    positions = {p.id: UnitPosition(p.x, p.y, p.alt, p.heading, p.speed) for p in req.units}
    _world().update_positions(positions, req.gone)
    return {"units": len(positions), "gone": len(req.gone)}


@app.put("/host/warehouses/{objective_id}")
async def put_warehouse(objective_id: str, req: InventoryIn):
    _world().report_inventory(objective_id, req.inventory)
    return {"objective": objective_id}


@app.put("/host/marks")
async def put_marks(req: MarksIn):
    _world().set_marks([MarkPanel(m.id, m.text, (m.x, m.y)) for m in req.marks])
    return {"marks": len(req.marks)}


@app.get("/host/outbox", response_model=MessagesResponse)
async def get_outbox(since: int = 0, limit: int = 500):
    """Get delivered messages since offset."""
    msgs, next_offset = _runner().events.since(since, limit)
    return MessagesResponse(
        next_offset=next_offset,
        messages=[{"ts": m.ts.isoformat(), **message_to_dict(m.message)} for m in msgs],
    )


@app.post("/host/actions")
async def drain_actions():
    """Spawns, forced slot changes and explosions requested since the last poll."""
    return _world().drain_actions()


@app.get("/host/menus")
async def get_menus():
    return {
        sid: {"side": s.side.name.lower(), "objective": s.objective, "life_type": s.life_type.value}
        for sid, s in _world().menus.items()
    }


@app.get("/mission/state")
async def get_state():
    """Runner state plus a summary of the persistent mission state."""
    r = _runner()
    out = {
        "state": r.state.value,
        "error": r.error,
        "ticks": r.ticks,
        "perf": r.perf.summary(),
        "objectives": {},
        "players": 0,
    }
    store = r.ctx.store
    if store is not None:
        out["objectives"] = {
            oid: {
                "name": o.name,
                "owner": o.owner.name.lower(),
                "threatened": o.threatened,
                "defenders_alive": o.defenders_alive(),
                "inventory": dict(o.warehouse.inventory),
            }
            for oid, o in store.objectives.items()
        }
        out["players"] = len(store.players)
    return out
