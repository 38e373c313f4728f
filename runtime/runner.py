import asyncio
import os
import time
from datetime import datetime, timedelta, timezone
from enum import Enum
from pathlib import Path
from typing import Awaitable, Callable, Optional

from engine import snapshot
from engine.config import Cfg
from engine.messages import PanelToAll
from engine.model import Side
from engine.sensors import contact_reports
from engine.store import MissionStore
from engine.world import MissionError, SPECTATOR_SLOT, World
from infra.logger import get_logger

from . import hooks
from .admin import run_admin_commands
from .background import BackgroundWorker, LogPerf, PersistenceLost, SaveState
from .context import MissionContext
from .eventlog import DEFAULT_RETAINED, EventLog
from .perf import Perf

log = get_logger(__name__)

PERF_LOG_INTERVAL = timedelta(seconds=60)


class RunnerState(Enum):
    WAITING_FOR_LOAD = "waiting_for_load"
    INITIALIZING = "initializing"
    RUNNING = "running"
    FAILED = "failed"


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _die(exc: BaseException) -> None:
    log.critical("cannot persist mission state, terminating: %s", exc)
    os._exit(70)


class MissionRunner:
    """Async driver that owns the mission context and ticks it once per interval.

    Ticks and host hooks both run on the event loop thread and never await
    in the middle, so each one sees the state the previous one left.
    """

    def __init__(
        self,
        world: World,
        write_dir: Path,
        interval_s: float = 1.0,
        failed_interval_s: float = 10.0,
        outbox_size: int = DEFAULT_RETAINED,
        worker: Optional[BackgroundWorker] = None,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        now: Callable[[], datetime] = _utcnow,
        on_fatal: Callable[[BaseException], None] = _die,
    ):
        self.world = world
        self.write_dir = Path(write_dir)
        self.interval_s = interval_s
        self.failed_interval_s = failed_interval_s
        self.worker = worker or BackgroundWorker()
        self.ctx = MissionContext()
        self.state = RunnerState.WAITING_FOR_LOAD
        self.error: Optional[str] = None
        self.events = EventLog(outbox_size)
        self.perf = Perf()
        self.ticks = 0
        self._clock = clock
        self._sleep = sleep
        self._now = now
        self._on_fatal = on_fatal
        self._task: asyncio.Task | None = None

    # ------------------------------------------------------------------#
    # Loop
    # ------------------------------------------------------------------#
    async def start(self):
        """Start the background worker and the tick loop."""
        if self._task:
            return
        self.worker.start()
        self._task = asyncio.create_task(self._loop())
        self._task.add_done_callback(self._loop_done)

    async def stop(self):
        """Stop the tick loop gracefully."""
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            except PersistenceLost:
                pass
            self._task = None
        self.worker.stop()

    async def _loop(self):
        """Sleep until the deadline, step, and set the next deadline from the current time."""
        deadline = self._clock() + self.interval_s
        while True:
            await self._sleep(max(0.0, deadline - self._clock()))
            delay = self.step()
            deadline = self._clock() + delay

    def _loop_done(self, task: asyncio.Task) -> None:
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            self._on_fatal(exc)

    def step(self) -> float:
        """Advance the state machine once. Returns seconds until the next step."""
        if self.state == RunnerState.WAITING_FOR_LOAD:
            if not self.ctx.loaded:
                return self.interval_s
            self.initialize()
            return self.interval_s
        if self.state == RunnerState.RUNNING:
            self.run_timed_events()
            return self.interval_s
        if self.state == RunnerState.FAILED:
            self._show_failure()
            return self.failed_interval_s
        return self.interval_s

    # ------------------------------------------------------------------#
    # Initialization
    # ------------------------------------------------------------------#
    def snapshot_path(self, sortie: str) -> Path:
        return self.write_dir / sortie

    def initialize(self) -> bool:
        """Build the store from a saved state or the config. Failure is terminal."""
        self.state = RunnerState.INITIALIZING
        try:
            self._initialize()
        except Exception as e:
            log.error("THE MISSION CANNOT START: %s", e, exc_info=True)
            self.error = f"{type(e).__name__}: {e}"
            self.state = RunnerState.FAILED
            self._show_failure()
            return False
        self.state = RunnerState.RUNNING
        return True

    def _initialize(self) -> None:
        log.info("indexing the mission")
        layout = self.world.mission_layout()
        if not layout.sortie:
            raise MissionError("missing sortie in mission")
        path = self.snapshot_path(layout.sortie)
        log.info("path to saved state is %s", path)
        cfg = Cfg.load(path)
        if path.exists():
            log.info("saved state exists, loading it")
            store = MissionStore.load(cfg, layout, snapshot.read(path))
        else:
            log.info("saved state doesn't exist, starting from default")
            store = MissionStore.init(cfg, layout)
        log.info("queued %d groups to spawn", store.respawn_after_load())
        log.info("initializing menus")
        self.world.init_menus(store.slots)
        self.ctx.store = store
        self.ctx.snapshot_path = path
        log.info("starting timed events")

    def _show_failure(self) -> None:
        msg = PanelToAll(3600, True, f"THE MISSION CANNOT START BECAUSE OF AN ERROR\n\n{self.error}")
        try:
            self.world.deliver(msg)
        except Exception as e:
            log.error("could not display the startup error: %s", e)
            return
        self.events.append_many(self._now(), [msg])

    # ------------------------------------------------------------------#
    # Tick
    # ------------------------------------------------------------------#
    def _guard(self, stage: str, fn: Callable[[], object]):
        """Run one stage; its failure is logged and does not stop the tick."""
        start = time.perf_counter()
        try:
            return fn()
        except PersistenceLost:
            raise
        except Exception as e:
            log.error("error in %s: %s", stage, e, exc_info=True)
            return None
        finally:
            self.perf.record(stage, start)

    def run_timed_events(self) -> None:
        """One tick. Stages run in a fixed order so later ones see earlier effects."""
        ctx = self.ctx
        ts = self._now()
        start = time.perf_counter()
        self._guard("do_repairs", lambda: ctx.db.maybe_do_repairs(ts))
        self._guard("return_lives", lambda: hooks.return_lives(ctx, self.world, ts))
        self._guard("force_to_spectators", self._force_to_spectators)
        self._guard("slow_timed", lambda: self.run_slow_timed_events(ts))
        self._guard(
            "spawn_queue",
            lambda: ctx.db.spawnq.process(self.world.spawn_group, ctx.db.cfg.spawn_per_tick),
        )
        self._guard("advise_captured", lambda: ctx.capture.advise_captured(ctx.db, ctx.msgs, ts))
        self._guard("advise_capturable", lambda: ctx.capture.advise_capturable(ctx.db, ctx.msgs))
        self._guard("track_positions", lambda: self._refresh_track_positions(ts))
        self._guard("process_messages", lambda: self._process_messages(ts))
        self._guard("snapshot", lambda: self._snapshot(ts))
        self._guard("logistics", lambda: self._logistics(ts))
        self._guard("admin_commands", lambda: run_admin_commands(ctx, self.world))
        self.perf.record("timed_events", start)
        self._log_perf(ts)
        self.ticks += 1

    def run_slow_timed_events(self, ts: datetime) -> None:
        ctx = self.ctx
        freq = timedelta(seconds=ctx.db.cfg.slow_timed_events_freq)
        if ctx.last_slow_timed_events is not None and ts - ctx.last_slow_timed_events < freq:
            return
        ctx.last_slow_timed_events = ts
        dead = self._guard("unit_positions", lambda: ctx.db.update_unit_positions(self.world)) or []
        for uid in dead:
            self._guard("unit_killed", lambda uid=uid: hooks.unit_killed(ctx, uid, ts))
        self._guard("ewr_tracks", lambda: ctx.ewr.update_tracks(ctx.db, ts))
        self._guard("ewr_reports", self._ewr_reports)
        self._guard("advise_threats", lambda: ctx.capture.advise_threats(ctx.db, ctx.msgs))

    def _ewr_reports(self) -> None:
        for uid, report in contact_reports(self.ctx.ewr, self.ctx.db):
            self.ctx.msgs.panel_to_unit(10, False, uid, report)

    def _refresh_track_positions(self, ts: datetime) -> None:
        for uid in self.ctx.ewr.refresh_positions(self.world):
            hooks.unit_killed(self.ctx, uid, ts)

    def _force_to_spectators(self) -> None:
        db = self.ctx.db
        ucids, db.force_to_spectators = db.force_to_spectators, []
        for ucid in ucids:
            pid = self.ctx.id_by_ucid.get(ucid)
            if pid is None:
                log.warning("no id for player ucid %s", ucid)
                continue
            try:
                self.world.force_player_slot(pid, Side.NEUTRAL, SPECTATOR_SLOT)
            except Exception as e:
                log.error("error forcing player %s to spectators: %s", pid, e)
                continue
            db.player_deslot(ucid)

    def _process_messages(self, ts: datetime) -> None:
        sent = self.ctx.msgs.process(self.world.deliver)
        if sent:
            self.events.append_many(ts, sent)

    def _snapshot(self, ts: datetime) -> None:
        snap = self.ctx.db.maybe_snapshot(ts)
        if snap is not None:
            self.worker.send(SaveState(self.ctx.snapshot_path, snap))

    def _logistics(self, ts: datetime) -> None:
        res = self.ctx.logistics.maybe_tick(self.ctx.db, self.world, ts)
        if res is not None:
            log.info(
                "logistics tick: %s, %d errors",
                "production delivered" if res.delivered else "hub transfer",
                len(res.errors),
            )

    def _log_perf(self, ts: datetime) -> None:
        ctx = self.ctx
        if ctx.last_perf_log is None or ts - ctx.last_perf_log >= PERF_LOG_INTERVAL:
            ctx.last_perf_log = ts
            self.worker.send(LogPerf(self.perf.summary()))

    # ------------------------------------------------------------------#
    # Host hooks
    # ------------------------------------------------------------------#
    def on_mission_load_end(self) -> None:
        self.ctx.loaded = True
        log.debug("mission loaded")

    def on_mission_end(self) -> None:
        """Drop all mission state; the background worker keeps running."""
        log.info("mission ended")
        self.ctx = MissionContext()
        self.state = RunnerState.WAITING_FOR_LOAD
        self.error = None

    def on_event(self, ev: hooks.HostEvent) -> None:
        start = time.perf_counter()
        log.info("onEvent: %r", ev)
        try:
            hooks.on_event(self.ctx, ev, self._now())
        except Exception as e:
            log.error("event %r failed: %s", ev, e)
        finally:
            self.perf.record("host_events", start)

    def on_player_try_connect(self, addr: str, name: str, ucid: str, player_id: int) -> bool:
        return hooks.on_player_try_connect(self.ctx, addr, name, ucid, player_id)

    def on_player_disconnect(self, player_id: int) -> None:
        hooks.on_player_disconnect(self.ctx, player_id)

    def on_player_try_send_chat(self, player_id: int, msg: str, slot: str = SPECTATOR_SLOT) -> str:
        start = time.perf_counter()
        try:
            return hooks.on_player_try_send_chat(self.ctx, player_id, msg, slot, self._now())
        finally:
            self.perf.record("host_hooks", start)

    def on_player_try_change_slot(self, player_id: int, side: Side, slot: str) -> Optional[bool]:
        start = time.perf_counter()
        try:
            return hooks.on_player_try_change_slot(self.ctx, player_id, side, slot, self._now())
        finally:
            self.perf.record("host_hooks", start)
