"""Warehouse <-> objective synchronization and supply delivery.

A logistics tick pulls the host's warehouse inventories into the objectives,
delivers supplies, then pushes the reconciled inventories back. Combat eats
into the host warehouses between ticks while production and transfers only
happen here, so pulling first keeps either side from clobbering the other.
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, List, Optional, Set

from infra.logger import get_logger

from .model import Objective, ObjectiveKind, Side
from .store import MissionStore
from .world import UnknownObjective, World

log = get_logger(__name__)


@dataclass
class LogisticsResult:
    delivered: bool  # full production delivery, otherwise a hub transfer
    errors: List[str] = field(default_factory=list)


def _is_hub(obj: Objective) -> bool:
    return obj.kind == ObjectiveKind.LOGISTICS_HUB


def _supplied_objectives(store: MissionStore):
    """(objective, hub) pairs for every objective fed by a hub its owner also holds."""
    for obj in store.objectives.values():
        if _is_hub(obj) or not obj.logistics or obj.hub is None:
            continue
        hub = store.objectives.get(obj.hub)
        if hub is None or hub.owner != obj.owner:
            continue
        yield obj, hub


def sync_objectives_from_warehouses(store: MissionStore, world: World, errors: List[str]) -> Set[str]:
    """Pull host inventories into the objectives.

    Returns the objectives whose host warehouse may be overwritten on push:
    those pulled now, and those the host never reported, which the push seeds.
    A failed query leaves the objective alone on both sides.
    """
    writable: Set[str] = set()
    for obj in store.objectives.values():
        if not obj.logistics:
            continue
        try:
            raw = world.warehouse_inventory(obj.id)
        except UnknownObjective:
            log.info("no warehouse reported for objective %s yet, seeding it", obj.id)
            writable.add(obj.id)
            continue
        except Exception as e:
            log.error("failed to pull warehouse of objective %s: %s", obj.id, e)
            errors.append(f"failed to pull warehouse of objective {obj.id}: {e}")
            continue
        inv = {k: max(0, int(v)) for k, v in raw.items()}
        if inv != obj.warehouse.inventory:
            obj.warehouse.inventory = inv
            store.mark_dirty()
        writable.add(obj.id)
    return writable


def sync_warehouses_from_objectives(store: MissionStore, world: World, writable: Set[str], errors: List[str]) -> None:
    for obj in store.objectives.values():
        if not obj.logistics or obj.id not in writable:
            continue
        try:
            world.set_warehouse_inventory(obj.id, dict(obj.warehouse.inventory))
        except Exception as e:
            log.error("failed to push warehouse of objective %s: %s", obj.id, e)
            errors.append(f"failed to push warehouse of objective {obj.id}: {e}")


def _transfer(store: MissionStore, hub: Objective, obj: Objective, limit: Optional[int]) -> None:
    for res in store.cfg.warehouse.capacity:
        want = store.capacity(obj, res) - obj.warehouse.get(res)
        if limit is not None:
            want = min(want, limit)
        n = min(max(0, want), hub.warehouse.get(res))
        if n > 0:
            hub.warehouse.set(res, hub.warehouse.get(res) - n)
            obj.warehouse.set(res, obj.warehouse.get(res) + n)


def deliver_production(store: MissionStore) -> None:
    """Produce at every held hub, then top up the objectives each hub feeds."""
    wcfg = store.cfg.warehouse
    for hub in store.objectives.values():
        if not _is_hub(hub) or hub.owner == Side.NEUTRAL:
            continue
        for res, n in wcfg.production.items():
            hub.warehouse.set(res, min(store.capacity(hub, res), hub.warehouse.get(res) + n))
    for obj, hub in _supplied_objectives(store):
        _transfer(store, hub, obj, None)
    store.mark_dirty()


def deliver_supplies_from_logistics_hubs(store: MissionStore) -> None:
    """Move at most supply_transfer_size of each resource from hub to objective."""
    size = store.cfg.warehouse.supply_transfer_size
    for obj, hub in _supplied_objectives(store):
        _transfer(store, hub, obj, size)
    store.mark_dirty()


class LogisticsEngine:
    def __init__(self):
        self.last_tick: Optional[datetime] = None
        self.ticks_since_delivery = 0

    def due(self, store: MissionStore, now: datetime) -> bool:
        wcfg = store.cfg.warehouse
        if wcfg is None:
            return False
        if self.last_tick is None:
            return True
        return now - self.last_tick >= timedelta(minutes=wcfg.tick)

    def maybe_tick(self, store: MissionStore, world: World, now: datetime) -> Optional[LogisticsResult]:
        """Run a logistics tick if the configured interval has elapsed."""
        if not self.due(store, now):
            return None
        self.last_tick = now
        wcfg = store.cfg.warehouse
        self.ticks_since_delivery += 1
        if self.ticks_since_delivery >= wcfg.ticks_per_delivery:
            self.ticks_since_delivery = 0
            return LogisticsResult(True, self.run(store, world, deliver_production))
        return LogisticsResult(False, self.run(store, world, deliver_supplies_from_logistics_hubs))

    def run(self, store: MissionStore, world: World, deliver: Callable[[MissionStore], None]) -> List[str]:
        """Pull, deliver, push. Each step runs even if an earlier one failed."""
        errors: List[str] = []
        writable: Set[str] = set()

        def pull():
            writable.update(sync_objectives_from_warehouses(store, world, errors))

        steps = [
            ("sync objectives from warehouses", pull),
            (deliver.__name__.replace("_", " "), lambda: deliver(store)),
            ("sync warehouses from objectives", lambda: sync_warehouses_from_objectives(store, world, writable, errors)),
        ]
        for name, step in steps:
            try:
                step()
            except Exception as e:
                log.error("logistics step '%s' failed: %s", name, e)
                errors.append(f"failed to {name}: {e}")
        return errors
