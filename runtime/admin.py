from engine import logistics
from engine.commands import AdminHelp, LogisticsDeliverNow, LogisticsTickNow, ReduceInventory, Tim
from engine.world import World
from infra.logger import get_logger

from .context import MissionContext

log = get_logger(__name__)


def run_admin_commands(ctx: MissionContext, world: World) -> None:
    """Execute queued admin commands; each gets a private reply."""
    cmds, ctx.admin_commands = ctx.admin_commands, []
    for player_id, cmd in cmds:
        try:
            reply = _run(ctx, world, cmd)
        except Exception as e:
            log.error("admin command %r from %s failed: %s", cmd, player_id, e)
            reply = f"{type(cmd).__name__} failed: {e}"
        if reply:
            ctx.msgs.chat(player_id, reply)


def _run(ctx: MissionContext, world: World, cmd) -> str:
    db = ctx.db
    if isinstance(cmd, AdminHelp):
        return ""
    if isinstance(cmd, ReduceInventory):
        db.admin_reduce_inventory(cmd.objective, cmd.amount)
        return "inventory reduced"
    if isinstance(cmd, (LogisticsTickNow, LogisticsDeliverNow)):
        if db.cfg.warehouse is None:
            return "logistics is not configured for this mission"
        if isinstance(cmd, LogisticsTickNow):
            errors = ctx.logistics.run(db, world, logistics.deliver_supplies_from_logistics_hubs)
            done = "tick complete"
        else:
            errors = ctx.logistics.run(db, world, logistics.deliver_production)
            done = "deliver complete"
        return " ".join(errors) if errors else done
    if isinstance(cmd, Tim):
        n = 0
        for mk in world.mark_panels():
            if mk.text == cmd.key:
                world.explosion(mk.pos, float(cmd.size))
                ctx.msgs.delete_mark(mk.id)
                n += 1
        return f"detonated {n} marks"
    raise ValueError(f"unknown admin command {cmd!r}")
