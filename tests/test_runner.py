"""Test the mission runner: start-up state machine, tick stages and host hooks."""
import asyncio
import json
from datetime import timedelta

import pytest

from conftest import T0, aircraft, ground, make_layout
from engine import snapshot
from engine.messages import Chat, DeleteMark, PanelToAll, PanelToSide, PanelToUnit
from engine.model import Side
from engine.store import MissionStore
from engine.world import MarkPanel, MissionError, UnitPosition
from runtime import hooks
from runtime.background import PersistenceLost
from runtime.runner import MissionRunner, RunnerState


class Clock:
    def __init__(self):
        self.now = T0

    def __call__(self):
        return self.now

    def advance(self, **kw):
        self.now += timedelta(**kw)


@pytest.fixture
def clock():
    return Clock()


@pytest.fixture
def fatal():
    return []


@pytest.fixture
def runner(world, tmp_path, clock, fatal):
    r = MissionRunner(world, tmp_path, now=clock, on_fatal=fatal.append)
    r.worker.start()
    yield r
    r.worker.stop()


def _running(runner: MissionRunner) -> MissionRunner:
    runner.on_mission_load_end()
    runner.step()
    assert runner.state == RunnerState.RUNNING
    return runner


def _chats(world, to):
    return [m.text for m in world.delivered if isinstance(m, Chat) and m.to == to]


def _join(runner, pid=1, ucid="u1", name="Viper", side="blue"):
    runner.on_player_try_connect("127.0.0.1", name, ucid, pid)
    assert runner.on_player_try_send_chat(pid, side) == ""


def test_waits_for_mission_load(runner, world):
    assert runner.step() == runner.interval_s
    assert runner.state == RunnerState.WAITING_FOR_LOAD
    assert runner.ctx.store is None

    _running(runner)
    assert runner.ctx.snapshot_path == runner.write_dir / "op-test"
    assert set(world.menus) == set(world.layout.slots)
    assert len(runner.ctx.db.spawnq) == 3


def test_initialization_failure_is_terminal(runner, world):
    world.layout_error = MissionError("could not index the mission")
    runner.on_mission_load_end()

    runner.step()

    assert runner.state == RunnerState.FAILED
    assert "could not index the mission" in runner.error
    panels = [m for m in world.delivered if isinstance(m, PanelToAll)]
    assert panels[0].text.startswith("THE MISSION CANNOT START BECAUSE OF AN ERROR")
    assert panels[0].duration == 3600
    # repeated while failed, never retried
    assert runner.step() == runner.failed_interval_s
    assert len([m for m in world.delivered if isinstance(m, PanelToAll)]) == 2
    assert runner.state == RunnerState.FAILED
    assert len(runner.events) == 2


def test_missing_sortie_fails(runner, world):
    world.layout.sortie = ""
    runner.on_mission_load_end()
    runner.step()
    assert runner.state == RunnerState.FAILED


def test_loads_saved_state(runner, world, cfg, tmp_path):
    saved = MissionStore.init(cfg, make_layout())
    saved.objectives["ab1"].owner = Side.RED
    saved.register_player("u9", "Hog", Side.RED)
    snapshot.write(tmp_path / "op-test", saved.snapshot(T0))

    _running(runner)

    assert runner.ctx.db.objectives["ab1"].owner == Side.RED
    assert runner.ctx.db.players["u9"].name == "Hog"


def test_reads_mission_config(runner, world, tmp_path):
    (tmp_path / "op-test.cfg.json").write_text(json.dumps({"spawn_per_tick": 1, "admins": ["u1"]}))
    _running(runner)
    assert runner.ctx.db.cfg.admins == ["u1"]

    runner.run_timed_events()
    assert len(world.spawned) == 1


def test_tick_saves_only_changes(runner):
    _running(runner)
    # initial state, then whatever the first logistics tick changed
    runner.run_timed_events()
    runner.run_timed_events()
    runner.run_timed_events()
    runner.worker.stop()
    assert runner.worker.saved == 2
    assert (runner.write_dir / "op-test").exists()


def test_failing_stage_does_not_stop_the_tick(runner, world):
    _running(runner)

    def boom(*args):
        raise RuntimeError("boom")

    runner.ctx.capture.advise_captured = boom
    runner.ctx.msgs.chat(None, "still delivered")

    runner.run_timed_events()

    assert Chat(None, "still delivered") in world.delivered
    assert runner.ticks == 1
    assert runner.perf.summary()["advise_captured"]["count"] == 1


def test_persistence_loss_escapes_the_tick(runner):
    _running(runner)
    runner.worker.stop()
    with pytest.raises(PersistenceLost):
        runner.run_timed_events()


@pytest.mark.asyncio
async def test_persistence_loss_is_fatal(world, tmp_path, fatal):
    r = MissionRunner(world, tmp_path, interval_s=0.01, on_fatal=fatal.append)
    r.on_mission_load_end()
    await r.start()
    r.worker.stop()
    for _ in range(100):
        if fatal:
            break
        await asyncio.sleep(0.01)
    await r.stop()

    assert len(fatal) == 1
    assert isinstance(fatal[0], PersistenceLost)


class StopLoop(Exception):
    pass


@pytest.mark.asyncio
async def test_next_deadline_is_measured_from_after_the_step(world, tmp_path, fatal):
    mono = [100.0]
    sleeps = []

    async def sleep(s):
        sleeps.append(s)
        mono[0] += s
        if len(sleeps) == 3:
            raise StopLoop

    r = MissionRunner(world, tmp_path, interval_s=1.0, clock=lambda: mono[0], sleep=sleep, on_fatal=fatal.append)

    def slow_step():
        # the tick overruns its interval
        mono[0] += 1.5
        return r.interval_s

    r.step = slow_step
    with pytest.raises(StopLoop):
        await r._loop()

    assert sleeps == [1.0, 1.0, 1.0]


@pytest.mark.asyncio
async def test_loop_ticks_until_stopped(world, tmp_path, fatal):
    r = MissionRunner(world, tmp_path, interval_s=0.01, on_fatal=fatal.append)
    r.on_mission_load_end()
    await r.start()
    await asyncio.sleep(0.2)
    await r.stop()

    assert r.state == RunnerState.RUNNING
    assert r.ticks > 0
    assert fatal == []
    ticks = r.ticks
    await asyncio.sleep(0.05)
    assert r.ticks == ticks


def test_life_taken_and_returned(runner, world, clock):
    _running(runner)
    _join(runner)
    assert runner.on_player_try_change_slot(1, Side.BLUE, "blue-alpha-1") is None
    runner.on_event(hooks.Birth(aircraft("jet", Side.BLUE, slot="blue-alpha-1")))
    runner.on_event(hooks.Takeoff("jet"))
    player = runner.ctx.db.players["u1"]
    assert player.lives[player.current_slot.life_taken].remaining == 2

    runner.on_event(hooks.Land("jet"))
    world.positions["jet"] = UnitPosition(100.0, 100.0)
    runner.run_timed_events()
    assert player.lives[player.current_slot.life_taken].remaining == 2

    clock.advance(seconds=11)
    runner.run_timed_events()
    clock.advance(seconds=11)
    runner.run_timed_events()

    panels = [m.text for m in world.delivered if isinstance(m, PanelToUnit) and m.unit == "jet"]
    assert panels[0].startswith("life taken\nstandard 2/3")
    assert [p for p in panels if p.startswith("life returned\n")] == ["life returned\nstandard 3/3 resetting in 05:59:49\n"]


def test_life_returned_after_the_reset_window(runner, world, clock):
    _running(runner)
    _join(runner)
    runner.on_player_try_change_slot(1, Side.BLUE, "blue-alpha-1")
    runner.on_event(hooks.Birth(aircraft("jet", Side.BLUE, slot="blue-alpha-1")))
    runner.on_event(hooks.Takeoff("jet"))
    runner.on_event(hooks.Land("jet"))
    world.positions["jet"] = UnitPosition(100.0, 100.0)
    clock.advance(hours=6, seconds=11)
    runner.run_timed_events()

    panels = [m.text for m in world.delivered if isinstance(m, PanelToUnit) and m.text.startswith("life returned\n")]
    assert panels == ["life returned\nstandard 3/3\n"]
    assert runner.ctx.db.players["u1"].lives == {}


def test_no_life_returned_when_destroyed(runner, world, clock):
    _running(runner)
    _join(runner)
    runner.on_player_try_change_slot(1, Side.BLUE, "blue-alpha-1")
    runner.on_event(hooks.Birth(aircraft("jet", Side.BLUE, slot="blue-alpha-1")))
    runner.on_event(hooks.Takeoff("jet"))
    runner.on_event(hooks.Land("jet"))
    runner.on_event(hooks.Dead("jet"))
    world.positions["jet"] = UnitPosition(0.0, 0.0)
    clock.advance(seconds=30)
    runner.run_timed_events()

    assert runner.ctx.db.players["u1"].lives
    assert all(e.remaining == 2 for e in runner.ctx.db.players["u1"].lives.values())
    assert not any(isinstance(m, PanelToUnit) and m.text.startswith("life returned") for m in world.delivered)


def test_capture_forces_losers_to_spectators(runner, world, clock):
    _running(runner)
    _join(runner)
    runner.on_player_try_change_slot(1, Side.BLUE, "blue-alpha-1")
    db = runner.ctx.db
    alpha = db.objectives["ab1"]
    alpha.groups["alpha-def"].alive = False
    alpha.last_repair = clock.now
    runner.on_event(hooks.Birth(ground("t1", "tanks", Side.RED, pos=(100.0, 0.0))))
    world.positions["t1"] = UnitPosition(100.0, 0.0)

    runner.run_timed_events()
    assert alpha.owner == Side.RED
    assert PanelToSide(Side.RED, 15, False, "our forces have captured Alpha") in world.delivered
    assert PanelToSide(Side.BLUE, 15, False, "we have lost Alpha") in world.delivered

    runner.run_timed_events()
    assert world.forced == [(1, Side.NEUTRAL, "")]
    assert "blue-alpha-1" not in db.player_in_slot


def test_slot_change_denials(runner, world):
    _running(runner)
    runner.on_player_try_connect("127.0.0.1", "Viper", "u1", 1)
    assert runner.on_player_try_change_slot(1, Side.BLUE, "blue-alpha-1") is False
    runner.run_timed_events()
    assert _chats(world, 1) == ["You must join Blue to use this slot. Type blue in chat."]

    runner.on_player_try_send_chat(1, "blue")
    assert runner.on_player_try_change_slot(1, Side.BLUE, "blue-bravo-1") is False
    # spectators are always allowed
    assert runner.on_player_try_change_slot(1, Side.NEUTRAL, "") is None
    # unknown players and slots deny
    assert runner.on_player_try_change_slot(99, Side.BLUE, "blue-alpha-1") is False
    assert runner.on_player_try_change_slot(1, Side.BLUE, "no-such-slot") is False


def test_slot_change_before_start_denies(runner):
    assert runner.on_player_try_change_slot(1, Side.BLUE, "blue-alpha-1") is False


def test_chat_commands_reply_privately(runner, world):
    _running(runner)
    _join(runner)
    assert runner.on_player_try_send_chat(1, "good luck all") == "good luck all"
    assert runner.on_player_try_send_chat(1, "-switch red", "blue-alpha-1") == ""
    assert runner.on_player_try_send_chat(1, "-bogus") == ""
    assert runner.on_player_try_send_chat(1, "blue") == ""
    runner.run_timed_events()

    replies = _chats(world, 1)
    assert replies[0].startswith("Welcome to the Blue team")
    assert replies[1] == "you must be in spectators to switch sides"
    assert replies[2].startswith("unknown command '-bogus'")
    assert replies[3] == "you are already on Blue team!"
    assert "Viper has joined Blue team" in _chats(world, None)


def test_switch_side_and_lives(runner, world):
    _running(runner)
    _join(runner)
    runner.on_player_try_send_chat(1, "-switch red")
    runner.on_player_try_send_chat(1, "-lives")
    runner.run_timed_events()
    assert runner.ctx.db.players["u1"].side == Side.RED
    assert "Viper has switched to Red" in _chats(world, None)
    assert _chats(world, 1)[-1].startswith("standard 3/3\n")


def test_switch_side_denied_while_slotted(runner, world):
    _running(runner)
    _join(runner)
    assert runner.on_player_try_change_slot(1, Side.BLUE, "blue-alpha-1") is None
    # the host did not say which slot the player is in
    runner.on_player_try_send_chat(1, "-switch red")
    runner.run_timed_events()
    db = runner.ctx.db
    assert db.players["u1"].side == Side.BLUE
    assert db.player_in_slot == {"blue-alpha-1": "u1"}
    assert _chats(world, 1)[-1] == "you must be in spectators to switch sides"

    assert runner.on_player_try_change_slot(1, Side.NEUTRAL, "") is None
    runner.on_player_try_send_chat(1, "-switch red")
    assert db.players["u1"].side == Side.RED
    assert db.player_in_slot == {}


def test_admin_commands(runner, world, tmp_path):
    (tmp_path / "op-test.cfg.json").write_text(json.dumps({"admins": ["boss"]}))
    _running(runner)
    _join(runner, pid=1, ucid="boss", name="Boss")
    _join(runner, pid=2, ucid="u2", name="Rando")
    world.marks = [MarkPanel(7, "boom", (1.0, 2.0)), MarkPanel(8, "other", (5.0, 5.0))]
    alpha = runner.ctx.db.objectives["ab1"]
    alpha.warehouse.inventory = {"fuel": 80}
    world.inventories["ab1"] = {"fuel": 80}

    runner.on_player_try_send_chat(2, "-admin reduce-inventory Alpha 50")
    runner.on_player_try_send_chat(2, "-admin nuke")
    runner.on_player_try_send_chat(1, "-admin help")
    runner.on_player_try_send_chat(1, "-admin reduce-inventory Alpha 50")
    runner.on_player_try_send_chat(1, "-admin tim boom")
    runner.run_timed_events()
    runner.run_timed_events()

    replies = _chats(world, 1)
    assert "reduce-inventory" in replies[1]
    assert "inventory reduced" in replies
    assert "detonated 1 marks" in replies
    assert world.explosions == [((1.0, 2.0), 3000.0)]
    assert DeleteMark(7) in world.delivered
    assert alpha.warehouse.get("fuel") == 40
    assert _chats(world, 2)[1:] == []


def test_disconnect_frees_the_slot(runner):
    _running(runner)
    _join(runner)
    runner.on_player_try_change_slot(1, Side.BLUE, "blue-alpha-1")
    runner.on_player_disconnect(1)
    assert "blue-alpha-1" not in runner.ctx.db.player_in_slot
    assert 1 not in runner.ctx.info_by_player_id
    assert "u1" not in runner.ctx.id_by_ucid


def test_bad_event_is_logged_not_raised(runner):
    _running(runner)
    runner.on_event(hooks.Takeoff("nobody"))
    runner.on_event(hooks.PlayerEnterUnit("nobody"))


def test_mission_end_resets_context(runner):
    _running(runner)
    _join(runner)
    runner.on_mission_end()
    assert runner.state == RunnerState.WAITING_FOR_LOAD
    assert runner.ctx.store is None
    assert runner.ctx.info_by_player_id == {}
    assert runner.worker.alive
    _running(runner)
