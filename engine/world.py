"""The host platform as seen from the mission core.

Everything the core needs from the running simulation goes through the
``World`` protocol. Calls are synchronous and happen on the tick thread.
"""
from dataclasses import dataclass, field
from typing import Dict, List, Protocol

from .messages import Message
from .model import Objective, Position, Side, Slot, SpawnRequest


class MissionError(Exception):
    """Base class for mission state errors."""


class UnitNotFound(MissionError):
    def __init__(self, unit_id: str):
        super().__init__(f"unit {unit_id} does not exist")
        self.unit_id = unit_id


class UnknownPlayer(MissionError):
    pass


class UnknownObjective(MissionError):
    pass


class UnknownSlot(MissionError):
    pass


@dataclass
class UnitPosition:
    x: float
    y: float
    alt: float = 0.0
    heading: float = 0.0
    speed: float = 0.0

    @property
    def pos(self) -> Position:
        return (self.x, self.y)


@dataclass
class MarkPanel:
    id: int
    text: str
    pos: Position


@dataclass
class MissionLayout:
    """Index of the loaded mission: objectives, their groups, and slots."""
    sortie: str
    objectives: Dict[str, Objective] = field(default_factory=dict)
    slots: Dict[str, Slot] = field(default_factory=dict)


class World(Protocol):
    def mission_layout(self) -> MissionLayout: ...

    def unit_position(self, unit_id: str) -> UnitPosition: ...

    def warehouse_inventory(self, objective_id: str) -> Dict[str, int]: ...

    def set_warehouse_inventory(self, objective_id: str, inventory: Dict[str, int]) -> None: ...

    def spawn_group(self, request: SpawnRequest) -> None: ...

    def force_player_slot(self, player_id: int, side: Side, slot: str) -> None: ...

    def deliver(self, message: Message) -> None: ...

    def mark_panels(self) -> List[MarkPanel]: ...

    def explosion(self, pos: Position, power: float) -> None: ...

    def init_menus(self, slots: Dict[str, Slot]) -> None: ...


SPECTATOR_SLOT = ""


def is_spectator(slot: str) -> bool:
    return slot == SPECTATOR_SLOT


def distance(a: Position, b: Position) -> float:
    dx = b[0] - a[0]
    dy = b[1] - a[1]
    return (dx * dx + dy * dy) ** 0.5

