from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional, Tuple

Position = Tuple[float, float]  # (x, y) in meters, map coordinates


class Side(Enum):
    """Coalition a player, unit or objective belongs to."""
    NEUTRAL = 0
    RED = 1
    BLUE = 2

    def opposite(self) -> "Side":
        if self == Side.RED:
            return Side.BLUE
        if self == Side.BLUE:
            return Side.RED
        return Side.NEUTRAL

    @classmethod
    def parse(cls, s: str) -> "Side":
        s = s.strip().lower()
        if s == "blue":
            return cls.BLUE
        if s == "red":
            return cls.RED
        if s in ("neutral", "neutrals"):
            return cls.NEUTRAL
        raise ValueError(f"unknown side {s!r}")

    def __str__(self) -> str:
        return self.name.capitalize()


class LifeType(Enum):
    """Pool of lives a slot draws from."""
    STANDARD = "standard"
    INTERCEPT = "intercept"
    ATTACK = "attack"
    LOGISTICS = "logistics"
    RECON = "recon"

    def __str__(self) -> str:
        return self.value


class ObjectiveKind(Enum):
    AIRBASE = "airbase"
    FOB = "fob"
    LOGISTICS_HUB = "logistics_hub"
    SAM = "sam"
    FACTORY = "factory"


class UnitCategory(Enum):
    AIR = "air"
    GROUND = "ground"
    SHIP = "ship"


@dataclass
class LifeEntry:
    """Lives left of one type, and when that pool was last reset."""
    reset_ts: datetime
    remaining: int


@dataclass
class Sortie:
    """A player's current slot and the life type taken for the flight, if any."""
    slot: str
    life_taken: Optional[LifeType] = None


@dataclass
class Player:
    ucid: str
    name: str
    side: Side
    side_switches: Optional[int]  # None means unlimited
    lives: Dict[LifeType, LifeEntry] = field(default_factory=dict)
    current_slot: Optional[Sortie] = None


@dataclass
class Warehouse:
    """Supply inventory of one objective, amounts per resource category."""
    inventory: Dict[str, int] = field(default_factory=dict)

    def get(self, resource: str) -> int:
        return self.inventory.get(resource, 0)

    def set(self, resource: str, amount: int) -> None:
        self.inventory[resource] = max(0, int(amount))


@dataclass
class GroupTemplate:
    """A defender group an objective spawns for its owner."""
    name: str
    side: Side
    unit_names: List[str]
    unit_type: str
    category: UnitCategory = UnitCategory.GROUND
    alive: bool = True


@dataclass
class Objective:
    id: str
    name: str
    kind: ObjectiveKind
    pos: Position
    radius: float
    owner: Side
    logistics: bool = True  # linked to a hub (or is one)
    hub: Optional[str] = None
    threatened: bool = False
    last_repair: Optional[datetime] = None
    groups: Dict[str, GroupTemplate] = field(default_factory=dict)
    warehouse: Warehouse = field(default_factory=Warehouse)

    def owner_groups(self) -> List[GroupTemplate]:
        return [g for g in self.groups.values() if g.side == self.owner]

    def defenders_alive(self) -> bool:
        return any(g.alive for g in self.owner_groups())


@dataclass
class Slot:
    id: str
    side: Side
    objective: str
    life_type: LifeType
    unit_name: str


@dataclass
class Unit:
    """A live in-world entity."""
    id: str
    name: str
    group: str
    side: Side
    unit_type: str
    category: UnitCategory
    pos: Position = (0.0, 0.0)
    alt: float = 0.0
    heading: float = 0.0
    speed: float = 0.0
    slot: Optional[str] = None
    player: Optional[str] = None  # ucid of the player flying it
    objective: Optional[str] = None  # objective it defends

    def is_air(self) -> bool:
        return self.category == UnitCategory.AIR


@dataclass
class SpawnRequest:
    """Deferred request to materialize a group."""
    objective: str
    group: str
    side: Side
    unit_type: str
    unit_names: List[str]
    pos: Position
    category: UnitCategory = UnitCategory.GROUND


@dataclass
class Track:
    """A sensor track of an opposing unit, as seen by one side."""
    unit_id: str
    side: Side
    pos: Position
    alt: float
    heading: float
    speed: float
    last_seen: datetime
