from typing import Annotated, Dict, List, Literal, Optional, Tuple, Union

from pydantic import BaseModel, Field

from engine.model import (
    GroupTemplate,
    LifeType,
    Objective,
    ObjectiveKind,
    Side,
    Slot,
    Unit,
    UnitCategory,
)
from engine.world import MissionLayout

SideName = Literal["neutral", "red", "blue"]


class GroupIn(BaseModel):
    """Defender group template."""
    name: str
    side: SideName
    unit_type: str
    unit_names: List[str]
    category: UnitCategory = UnitCategory.GROUND


class ObjectiveIn(BaseModel):
    id: str
    name: str
    kind: ObjectiveKind
    pos: Tuple[float, float]  # (x, y) position
    radius: float = 2000.0
    owner: SideName = "neutral"
    logistics: bool = True
    hub: Optional[str] = None
    groups: List[GroupIn] = Field(default_factory=list)


class SlotIn(BaseModel):
    id: str
    side: SideName
    objective: str
    life_type: LifeType = LifeType.STANDARD
    unit_name: str = ""


class LayoutIn(BaseModel):
    """Mission index pushed by the host at mission load end."""
    sortie: str
    objectives: List[ObjectiveIn] = Field(default_factory=list)
    slots: List[SlotIn] = Field(default_factory=list)

    def to_layout(self) -> MissionLayout:
        objectives = {
            o.id: Objective(
                id=o.id,
                name=o.name,
                kind=o.kind,
                pos=o.pos,
                radius=o.radius,
                owner=Side.parse(o.owner),
                logistics=o.logistics,
                hub=o.hub,
                groups={
                    g.name: GroupTemplate(
                        name=g.name,
                        side=Side.parse(g.side),
                        unit_names=list(g.unit_names),
                        unit_type=g.unit_type,
                        category=g.category,
                    )
                    for g in o.groups
                },
            )
            for o in self.objectives
        }
        slots = {
            s.id: Slot(
                id=s.id,
                side=Side.parse(s.side),
                objective=s.objective,
                life_type=s.life_type,
                unit_name=s.unit_name,
            )
            for s in self.slots
        }
        return MissionLayout(sortie=self.sortie, objectives=objectives, slots=slots)


class BirthIn(BaseModel):
    type: Literal["birth"]
    unit_id: str
    name: str
    group: str
    side: SideName
    unit_type: str
    category: UnitCategory = UnitCategory.GROUND
    x: float = 0.0
    y: float = 0.0
    alt: float = 0.0
    heading: float = 0.0
    speed: float = 0.0
    slot: Optional[str] = None

    def to_unit(self) -> Unit:
        return Unit(
            id=self.unit_id,
            name=self.name,
            group=self.group,
            side=Side.parse(self.side),
            unit_type=self.unit_type,
            category=self.category,
            pos=(self.x, self.y),
            alt=self.alt,
            heading=self.heading,
            speed=self.speed,
            slot=self.slot,
        )


class UnitEventIn(BaseModel):
    type: Literal[
        "player_enter_unit",
        "player_leave_unit",
        "dead",
        "unit_lost",
        "pilot_dead",
        "ejection",
        "takeoff",
        "land",
    ]
    unit_id: str


class MissionEndIn(BaseModel):
    type: Literal["mission_end"]


EventIn = Annotated[Union[BirthIn, UnitEventIn, MissionEndIn], Field(discriminator="type")]


class ConnectIn(BaseModel):
    addr: str = ""
    name: str
    ucid: str
    player_id: int


class DisconnectIn(BaseModel):
    player_id: int


class ChatIn(BaseModel):
    player_id: int
    msg: str
    slot: str = ""  # current slot, empty for spectators


class SlotChangeIn(BaseModel):
    player_id: int
    side: SideName
    slot: str


class PositionIn(BaseModel):
    id: str
    x: float
    y: float
    alt: float = 0.0
    heading: float = 0.0
    speed: float = 0.0


class PositionsIn(BaseModel):
    """Latest unit positions; ``gone`` lists units that no longer exist."""
    units: List[PositionIn] = Field(default_factory=list)
    gone: List[str] = Field(default_factory=list)


class InventoryIn(BaseModel):
    inventory: Dict[str, int]


class MarkIn(BaseModel):
    id: int
    text: str
    x: float
    y: float


class MarksIn(BaseModel):
    marks: List[MarkIn] = Field(default_factory=list)


class AllowResponse(BaseModel):
    allow: bool


class ChatResponse(BaseModel):
    text: str


class MessagesResponse(BaseModel):
    """Messages response schema."""
    next_offset: int
    messages: list[dict]
