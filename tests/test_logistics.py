"""Test logistics cadence, delivery amounts and sync step isolation."""
from datetime import timedelta

from conftest import T0
from api.host import HostWorld
from engine import logistics
from engine.logistics import LogisticsEngine
from engine.model import Side
from engine.world import MissionError


def _mirror(store, world):
    world.inventories = {oid: dict(o.warehouse.inventory) for oid, o in store.objectives.items()}


def test_delivery_cadence(store, world, cfg):
    _mirror(store, world)
    k = cfg.warehouse.ticks_per_delivery
    step = timedelta(minutes=cfg.warehouse.tick)
    eng = LogisticsEngine()
    n = 3 * k + 2
    delivered = 0
    for i in range(n):
        res = eng.maybe_tick(store, world, T0 + step * i)
        assert res is not None
        assert res.errors == []
        delivered += res.delivered
        assert 0 <= eng.ticks_since_delivery <= k - 1
    assert delivered == n // k


def test_not_due_before_the_interval(store, world, cfg):
    _mirror(store, world)
    eng = LogisticsEngine()
    assert eng.maybe_tick(store, world, T0) is not None
    assert eng.maybe_tick(store, world, T0 + timedelta(minutes=cfg.warehouse.tick - 1)) is None
    assert eng.maybe_tick(store, world, T0 + timedelta(minutes=cfg.warehouse.tick)) is not None


def test_disabled_without_warehouse_config(store, world):
    store.cfg = store.cfg.model_copy(update={"warehouse": None})
    assert LogisticsEngine().maybe_tick(store, world, T0) is None


def test_deliver_production_tops_up_from_hub(store, cfg):
    alpha, hub = store.objectives["ab1"], store.objectives["hub1"]
    alpha.warehouse.set("fuel", 30)
    logistics.deliver_production(store)
    assert alpha.warehouse.get("fuel") == cfg.warehouse.capacity["fuel"]
    hub_cap = cfg.warehouse.capacity["fuel"] * cfg.warehouse.hub_multiplier
    assert hub.warehouse.get("fuel") == hub_cap - 70


def test_production_is_capped_at_hub_capacity(store, cfg):
    hub = store.objectives["hub1"]
    hub.warehouse.set("fuel", 0)
    store.objectives["ab1"].warehouse.set("fuel", 100)
    logistics.deliver_production(store)
    assert hub.warehouse.get("fuel") == cfg.warehouse.production["fuel"]


def test_incremental_delivery_is_limited(store, cfg):
    alpha, hub = store.objectives["ab1"], store.objectives["hub1"]
    alpha.warehouse.set("fuel", 30)
    before = hub.warehouse.get("fuel")
    logistics.deliver_supplies_from_logistics_hubs(store)
    size = cfg.warehouse.supply_transfer_size
    assert alpha.warehouse.get("fuel") == 30 + size
    assert hub.warehouse.get("fuel") == before - size


def test_enemy_hub_does_not_supply(store):
    alpha, hub = store.objectives["ab1"], store.objectives["hub1"]
    alpha.warehouse.set("fuel", 30)
    hub.owner = Side.RED
    logistics.deliver_production(store)
    assert alpha.warehouse.get("fuel") == 30


def test_pull_then_push(store, world):
    _mirror(store, world)
    # combat losses reported by the host since the last tick
    world.inventories["ab1"]["fuel"] = 20
    errors = LogisticsEngine().run(store, world, logistics.deliver_supplies_from_logistics_hubs)
    assert errors == []
    assert store.objectives["ab1"].warehouse.get("fuel") == 30
    assert world.inventories["ab1"]["fuel"] == 30


def test_steps_run_independently(store, world):
    _mirror(store, world)

    def half_delivered(store):
        store.objectives["ab1"].warehouse.set("fuel", 25)
        raise MissionError("hub went away")

    errors = LogisticsEngine().run(store, world, half_delivered)
    assert errors == ["failed to half delivered: hub went away"]
    # the push still ran
    assert world.inventories["ab1"]["fuel"] == 25


def test_failed_pull_is_not_overwritten(store, world):
    world.inventory_error = MissionError("warehouse query failed")
    store.objectives["ab1"].warehouse.set("fuel", 30)
    errors = LogisticsEngine().run(store, world, logistics.deliver_supplies_from_logistics_hubs)
    assert len(errors) == sum(o.logistics for o in store.objectives.values())
    assert all(e.startswith("failed to pull warehouse of objective") for e in errors)
    # delivery still happened, but nothing was pushed over the unread warehouses
    assert store.objectives["ab1"].warehouse.get("fuel") == 40
    assert world.inventories == {}


def test_unreported_warehouses_are_seeded(store):
    world = HostWorld()
    world.report_inventory("hub1", {"fuel": 5})
    errors = LogisticsEngine().run(store, world, logistics.deliver_supplies_from_logistics_hubs)
    assert errors == []
    assert world.inventories["hub1"] == {"fuel": 5}
    assert store.objectives["hub1"].warehouse.inventory == {"fuel": 5}
    assert world.inventories["ab1"]["fuel"] == 100
    assert "sam1" not in world.inventories


class FlakyHubWorld(HostWorld):
    def warehouse_inventory(self, objective_id):
        if objective_id == "hub1":
            raise MissionError("warehouse query timed out")
        return super().warehouse_inventory(objective_id)


def test_one_failed_pull_does_not_stop_the_others(store):
    world = FlakyHubWorld()
    world.report_inventory("hub1", {"fuel": 5})
    world.report_inventory("ab1", {"fuel": 20})
    world.report_inventory("fob1", {"fuel": 7})
    errors = LogisticsEngine().run(store, world, logistics.deliver_supplies_from_logistics_hubs)

    assert errors == ["failed to pull warehouse of objective hub1: warehouse query timed out"]
    assert store.objectives["fob1"].warehouse.inventory == {"fuel": 7}
    assert world.inventories["ab1"]["fuel"] == 30
    assert world.inventories["hub1"] == {"fuel": 5}
