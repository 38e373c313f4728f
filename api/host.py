"""World implementation fed over HTTP.

The host pushes what it knows (layout, positions, warehouses, marks) and
polls for what the mission wants done (spawns, slot changes, explosions).
Outbound messages are read from the runner's event log.
"""
from dataclasses import asdict
from enum import Enum
from typing import Dict, List, Optional

from engine.messages import Message
from engine.model import Position, Side, Slot, SpawnRequest
from engine.world import MarkPanel, MissionError, MissionLayout, UnitNotFound, UnitPosition, UnknownObjective
from infra.logger import get_logger

log = get_logger(__name__)


def _plain(v):
    if isinstance(v, Enum):
        return v.name.lower() if isinstance(v, Side) else v.value
    if isinstance(v, (list, tuple)):
        return [_plain(x) for x in v]
    if isinstance(v, dict):
        return {k: _plain(x) for k, x in v.items()}
    return v


def message_to_dict(msg: Message) -> dict:
    """JSON form of an outbound message, tagged with its kind."""
    d = {k: _plain(v) for k, v in asdict(msg).items()}
    d["kind"] = type(msg).__name__
    return d


class HostWorld:
    def __init__(self):
        self.layout: Optional[MissionLayout] = None
        self.positions: Dict[str, UnitPosition] = {}
        self.inventories: Dict[str, Dict[str, int]] = {}
        self.marks: List[MarkPanel] = []
        self.menus: Dict[str, Slot] = {}
        self._spawns: List[SpawnRequest] = []
        self._forced: List[dict] = []
        self._explosions: List[dict] = []

    def reset(self) -> None:
        """Forget everything about the previous mission."""
        self.__init__()

    # pushed by the host
    def set_layout(self, layout: MissionLayout) -> None:
        self.layout = layout

    def update_positions(self, positions: Dict[str, UnitPosition], gone: List[str]) -> None:
        self.positions.update(positions)
        for uid in gone:
            self.positions.pop(uid, None)

    def report_inventory(self, objective_id: str, inventory: Dict[str, int]) -> None:
        self.inventories[objective_id] = dict(inventory)

    def set_marks(self, marks: List[MarkPanel]) -> None:
        self.marks = list(marks)

    # World protocol
    def mission_layout(self) -> MissionLayout:
        if self.layout is None:
            raise MissionError("the host has not sent the mission layout")
        return self.layout

    def unit_position(self, unit_id: str) -> UnitPosition:
        try:
            return self.positions[unit_id]
        except KeyError:
            raise UnitNotFound(unit_id) from None

    def warehouse_inventory(self, objective_id: str) -> Dict[str, int]:
        try:
            return dict(self.inventories[objective_id])
        except KeyError:
            raise UnknownObjective(f"no warehouse reported for objective {objective_id}") from None

    def set_warehouse_inventory(self, objective_id: str, inventory: Dict[str, int]) -> None:
        self.inventories[objective_id] = dict(inventory)

    def spawn_group(self, request: SpawnRequest) -> None:
        self._spawns.append(request)

    def force_player_slot(self, player_id: int, side: Side, slot: str) -> None:
        self._forced.append({"player_id": player_id, "side": side.name.lower(), "slot": slot})

    def deliver(self, message: Message) -> None:
        log.debug("outbound %r", message)

    def mark_panels(self) -> List[MarkPanel]:
        return list(self.marks)

    def explosion(self, pos: Position, power: float) -> None:
        self._explosions.append({"x": pos[0], "y": pos[1], "power": power})

    def init_menus(self, slots: Dict[str, Slot]) -> None:
        self.menus = dict(slots)

    # polled by the host
    def drain_actions(self) -> dict:
        spawns, self._spawns = self._spawns, []
        forced, self._forced = self._forced, []
        explosions, self._explosions = self._explosions, []
        return {
            "spawn": [{k: _plain(v) for k, v in asdict(r).items()} for r in spawns],
            "force_slot": forced,
            "explosions": explosions,
        }
