"""Shared fixtures: a small mission layout and an in-memory World."""
from datetime import datetime, timezone
from typing import Dict, List, Set

import pytest

from engine.config import Cfg
from engine.messages import Message
from engine.model import (
    GroupTemplate,
    LifeType,
    Objective,
    ObjectiveKind,
    Side,
    Slot,
    SpawnRequest,
    Unit,
    UnitCategory,
)
from engine.store import MissionStore
from engine.world import MarkPanel, MissionError, MissionLayout, UnitNotFound, UnitPosition

T0 = datetime(2026, 1, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_layout(sortie: str = "op-test") -> MissionLayout:
    """Four objectives: Alpha (blue airbase fed by Hub), Hub, Bravo (red FOB), Charlie (undefended red SAM)."""
    objectives = {
        "ab1": Objective(
            id="ab1", name="Alpha", kind=ObjectiveKind.AIRBASE, pos=(0.0, 0.0), radius=2000.0,
            owner=Side.BLUE, hub="hub1",
            groups={
                "alpha-def": GroupTemplate("alpha-def", Side.BLUE, ["alpha-def-1", "alpha-def-2"], "SA-8"),
                "alpha-def-red": GroupTemplate("alpha-def-red", Side.RED, ["alpha-red-1"], "SA-15"),
            },
        ),
        "hub1": Objective(
            id="hub1", name="Hub", kind=ObjectiveKind.LOGISTICS_HUB, pos=(50000.0, 0.0), radius=1000.0,
            owner=Side.BLUE,
            groups={"hub-def": GroupTemplate("hub-def", Side.BLUE, ["hub-def-1"], "M1097")},
        ),
        "fob1": Objective(
            id="fob1", name="Bravo", kind=ObjectiveKind.FOB, pos=(0.0, 100000.0), radius=1000.0,
            owner=Side.RED,
            groups={
                "bravo-def": GroupTemplate("bravo-def", Side.RED, ["bravo-def-1"], "SA-8"),
                "bravo-def-blue": GroupTemplate("bravo-def-blue", Side.BLUE, ["bravo-blue-1"], "M1097"),
            },
        ),
        "sam1": Objective(
            id="sam1", name="Charlie", kind=ObjectiveKind.SAM, pos=(100000.0, 100000.0), radius=1000.0,
            owner=Side.RED, logistics=False,
        ),
    }
    slots = {
        "blue-alpha-1": Slot("blue-alpha-1", Side.BLUE, "ab1", LifeType.STANDARD, "Alpha F-16 1"),
        "blue-alpha-2": Slot("blue-alpha-2", Side.BLUE, "ab1", LifeType.ATTACK, "Alpha A-10 1"),
        "blue-bravo-1": Slot("blue-bravo-1", Side.BLUE, "fob1", LifeType.STANDARD, "Bravo UH-1 1"),
        "red-bravo-1": Slot("red-bravo-1", Side.RED, "fob1", LifeType.ATTACK, "Bravo Su-25 1"),
        "red-charlie-1": Slot("red-charlie-1", Side.RED, "sam1", LifeType.STANDARD, "Charlie Mi-8 1"),
    }
    return MissionLayout(sortie=sortie, objectives=objectives, slots=slots)


def ground(uid: str, group: str, side: Side, pos=(0.0, 0.0), unit_type: str = "T-72") -> Unit:
    return Unit(id=uid, name=uid, group=group, side=side, unit_type=unit_type,
                category=UnitCategory.GROUND, pos=pos)


def aircraft(uid: str, side: Side, pos=(0.0, 0.0), alt: float = 5000.0, heading: float = 0.0,
             slot=None, unit_type: str = "F-16C") -> Unit:
    return Unit(id=uid, name=uid, group=f"{uid}-grp", side=side, unit_type=unit_type,
                category=UnitCategory.AIR, pos=pos, alt=alt, heading=heading, slot=slot)


class FakeWorld:
    """Records everything the mission asks of the host."""

    def __init__(self, layout: MissionLayout = None):
        self.layout = layout
        self.layout_error: Exception = None
        self.positions: Dict[str, UnitPosition] = {}
        self.inventories: Dict[str, Dict[str, int]] = {}
        self.inventory_error: Exception = None
        self.spawned: List[SpawnRequest] = []
        self.fail_spawn: Set[str] = set()
        self.forced: List[tuple] = []
        self.delivered: List[Message] = []
        self.fail_deliver = False
        self.marks: List[MarkPanel] = []
        self.explosions: List[tuple] = []
        self.menus = None

    def mission_layout(self) -> MissionLayout:
        if self.layout_error is not None:
            raise self.layout_error
        if self.layout is None:
            raise MissionError("no layout")
        return self.layout

    def unit_position(self, unit_id: str) -> UnitPosition:
        try:
            return self.positions[unit_id]
        except KeyError:
            raise UnitNotFound(unit_id) from None

    def warehouse_inventory(self, objective_id: str) -> Dict[str, int]:
        if self.inventory_error is not None:
            raise self.inventory_error
        return dict(self.inventories.get(objective_id, {}))

    def set_warehouse_inventory(self, objective_id: str, inventory: Dict[str, int]) -> None:
        self.inventories[objective_id] = dict(inventory)

    def spawn_group(self, request: SpawnRequest) -> None:
        if request.group in self.fail_spawn:
            raise MissionError(f"cannot spawn {request.group}")
        self.spawned.append(request)

    def force_player_slot(self, player_id: int, side: Side, slot: str) -> None:
        self.forced.append((player_id, side, slot))

    def deliver(self, message: Message) -> None:
        if self.fail_deliver:
            raise MissionError("host rejected the message")
        self.delivered.append(message)

    def mark_panels(self) -> List[MarkPanel]:
        return list(self.marks)

    def explosion(self, pos, power: float) -> None:
        self.explosions.append((pos, power))

    def init_menus(self, slots) -> None:
        self.menus = dict(slots)


@pytest.fixture
def cfg() -> Cfg:
    return Cfg(admins=["admin-ucid"])


@pytest.fixture
def layout() -> MissionLayout:
    return make_layout()


@pytest.fixture
def store(cfg, layout) -> MissionStore:
    return MissionStore.init(cfg, layout)


@pytest.fixture
def world(layout) -> FakeWorld:
    return FakeWorld(layout)
