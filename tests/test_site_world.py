import random

import pytest

from site_fleet.enterprise.core import Bounds, MaterialType, Obstacle, ObstacleType, ObjectStatus, Zone, ZoneType
from site_fleet.site_world import ObjectBatch, SiteWorld, WorldConfig, default_world_config

from conftest import small_site


def _world(config=None) -> SiteWorld:
    return SiteWorld(config or small_site(), cell_size=0.5, rng=random.Random(3))


def test_default_world_is_populated():
    world = SiteWorld(default_world_config(), cell_size=0.5, rng=random.Random(7))

    assert len(world.robots) == 4
    assert len(world.objects) == 45
    assert world.zones["zone-material-storage"].occupancy == 30
    assert all(not world.grid.is_blocked_point(*obj.pose.to_tuple()) for obj in world.objects.values())


def test_objects_are_assigned_to_containing_zone():
    world = _world()
    assert world.objects["box-1"].zone_id == "storage"
    assert world.zones["storage"].objects == ["box-1"]
    assert world.zone_at(0.5, 0.5) is None


def test_zone_slots_fill_in_row_major_order():
    world = _world()
    storage = world.zones["storage"]

    slots = world.zone_slots(storage)

    assert slots[0] == (1.75, 1.75)
    assert slots[1] == (3.25, 1.75)
    # (1.75, 1.75) is within clearance of box-1 at (2, 2)
    assert world.free_slot(storage) == (3.25, 1.75)


def test_slot_claims_are_exclusive_and_stable():
    world = _world()
    assembly = world.zones["assembly"]

    first = world.claim_slot(assembly, "task-1")
    second = world.claim_slot(assembly, "task-2")

    assert first != second
    assert world.claim_slot(assembly, "task-1") == first
    world.release_slot("task-1")
    assert world.claim_slot(assembly, "task-3") == first


def test_claim_on_a_blocked_slot_moves_to_the_next_free_one():
    world = _world()
    assembly = world.zones["assembly"]
    assert world.claim_slot(assembly, "task-1") == (12.75, 1.75)

    world.add_obstacle(
        Obstacle(id="pallet-1", type=ObstacleType.EQUIPMENT, bounds=Bounds(x=12.5, y=1.5, width=0.5, height=0.5))
    )

    assert world.claim_slot(assembly, "task-1") == (14.25, 1.75)
    assert world.claim_slot(assembly, "task-1") == (14.25, 1.75)


def test_spawn_object_uses_free_slot_and_generated_id():
    world = _world()
    obj = world.spawn_object(MaterialType.CEMENT_BAG, "storage")

    assert obj.id == "obj-001"
    assert obj.pose.to_tuple() == (3.25, 1.75)
    assert obj.weight == 50
    assert obj.status == ObjectStatus.AVAILABLE


def test_release_object_updates_zone():
    world = _world()
    obj = world.objects["box-1"]
    obj.status = ObjectStatus.CARRIED
    obj.holder = "mm-1"

    world.release_object(obj, (14.0, 3.0), ObjectStatus.PLACED)
    world.recompute_occupancy()

    assert obj.holder is None
    assert obj.zone_id == "assembly"
    assert world.zones["assembly"].occupancy == 1
    assert world.zones["storage"].occupancy == 0


def test_layout_changes_rebuild_grid():
    world = _world()
    barrier = Obstacle(id="b-1", type=ObstacleType.BARRIER, bounds=Bounds(x=6.0, y=6.0, width=1.0, height=1.0))

    world.add_obstacle(barrier)
    assert world.layout_version == 1
    assert world.grid.is_blocked_point(6.5, 6.5)

    with pytest.raises(ValueError):
        world.add_obstacle(barrier)

    world.remove_obstacle("b-1")
    assert world.layout_version == 2
    assert not world.grid.is_blocked_point(6.5, 6.5)


def _new_zones():
    return [
        Zone(
            id="yard",
            name="Yard",
            type=ZoneType.STORAGE,
            bounds=Bounds(x=1.0, y=1.0, width=6.0, height=4.0),
            capacity=6,
        ),
        Zone(
            id="pad",
            name="Pad",
            type=ZoneType.ASSEMBLY,
            bounds=Bounds(x=10.0, y=1.0, width=5.0, height=5.0),
            capacity=4,
        ),
    ]


def test_replace_zones_restocks_storage():
    world = _world()
    world.claim_slot(world.zones["assembly"], "task-1")

    world.replace_zones(_new_zones())

    assert set(world.zones) == {"yard", "pad"}
    assert "box-1" not in world.objects
    assert len(world.objects) == 3
    assert all(obj.zone_id == "yard" for obj in world.objects.values())
    assert world.zones["yard"].occupancy == 3
    assert world.zones["pad"].occupancy == 0
    assert world.layout_version == 1
    assert world.claim_slot(world.zones["pad"], "task-1") == (10.75, 1.75)


def test_replace_zones_with_explicit_batches():
    world = _world()

    world.replace_zones(_new_zones(), [ObjectBatch(zone_id="pad", count=2, materials=[MaterialType.TOOL_BOX])])

    assert world.zones["pad"].occupancy == 2
    assert world.zones["yard"].occupancy == 0
    assert {obj.material for obj in world.objects.values()} == {MaterialType.TOOL_BOX}


def test_batches_with_unknown_zone_are_rejected():
    config = small_site()
    config.object_batches.append(ObjectBatch(zone_id="nowhere", count=1))

    with pytest.raises(ValueError):
        _world(config)


def test_world_config_round_trips_through_yaml(tmp_path):
    path = tmp_path / "site.yaml"
    path.write_text(
        "width: 10\n"
        "height: 8\n"
        "zones:\n"
        "  - {id: yard, name: Yard, type: storage, bounds: {x: 1, y: 1, width: 3, height: 3}, capacity: 4}\n"
        "robots:\n"
        "  - {id: r1, category: pick_place, x: 5, y: 5}\n"
        "object_batches:\n"
        "  - {zone_id: yard, count: 2, materials: [sand_bag]}\n",
        encoding="utf-8",
    )

    config = WorldConfig.from_yaml(path)
    world = _world(config)

    assert world.robots["r1"].position == (5.0, 5.0)
    assert {obj.material for obj in world.objects.values()} == {MaterialType.SAND_BAG}

    with pytest.raises(FileNotFoundError):
        WorldConfig.from_yaml(tmp_path / "missing.yaml")
