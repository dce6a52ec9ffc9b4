from cochera.domain.building import (
    apply_capacities,
    plan_level_changes,
    regenerate_levels,
    total_capacity,
)


def _two_floors():
    return [
        {"id": "lvl-2", "garage_id": "g1", "type": "piso", "level_number": 2,
         "display_name": "Piso 2", "sort_order": 2, "total_spots": 12},
        {"id": "lvl-1", "garage_id": "g1", "type": "piso", "level_number": 1,
         "display_name": "Piso 1", "sort_order": 1, "total_spots": 10},
    ]


def test_adding_a_floor_preserves_existing_levels():
    config = {"garage_id": "g1", "count_subsuelos": 0, "has_planta_baja": False, "count_pisos": 3}

    levels = regenerate_levels(config, _two_floors())

    by_order = {level["sort_order"]: level for level in levels}
    assert [level["sort_order"] for level in levels] == [3, 2, 1]
    assert by_order[1]["id"] == "lvl-1" and by_order[1]["total_spots"] == 10
    assert by_order[2]["id"] == "lvl-2" and by_order[2]["total_spots"] == 12
    assert by_order[3]["id"] is None and by_order[3]["total_spots"] == 0
    assert by_order[3]["display_name"] == "Piso 3"


def test_full_stack_ordering():
    config = {"garage_id": "g1", "count_subsuelos": 2, "has_planta_baja": True, "count_pisos": 1}

    levels = regenerate_levels(config, [])

    assert [(l["type"], l["sort_order"]) for l in levels] == [
        ("piso", 1),
        ("planta_baja", 0),
        ("subsuelo", -1),
        ("subsuelo", -2),
    ]
    assert levels[-1]["display_name"] == "Subsuelo 2"
    assert levels[1]["display_name"] == "Planta Baja"


def test_custom_display_name_survives_regeneration():
    existing = [{"id": "pb", "sort_order": 0, "display_name": "Hall", "total_spots": 4}]

    levels = regenerate_levels({"garage_id": "g1", "has_planta_baja": True}, existing)

    assert levels == [{
        "id": "pb", "garage_id": "g1", "type": "planta_baja", "level_number": 0,
        "display_name": "Hall", "sort_order": 0, "total_spots": 4,
    }]


def test_negative_counts_are_treated_as_zero():
    levels = regenerate_levels({"count_pisos": -3, "count_subsuelos": "x", "has_planta_baja": False}, [])

    assert levels == []


def test_capacity_edits_apply_by_sort_order():
    config = {"garage_id": "g1", "has_planta_baja": False, "count_pisos": 3}
    levels = apply_capacities(regenerate_levels(config, _two_floors()), {3: 8, 1: -5, 99: 4})

    by_order = {level["sort_order"]: level["total_spots"] for level in levels}
    assert by_order == {3: 8, 2: 12, 1: 0}
    assert total_capacity(levels) == 20


def test_plan_splits_updates_inserts_and_deletes():
    existing = _two_floors()
    config = {"garage_id": "g1", "has_planta_baja": True, "count_pisos": 1}

    updates, inserts, deletes = plan_level_changes(regenerate_levels(config, existing), existing)

    assert [u["id"] for u in updates] == ["lvl-1"]
    assert [i["sort_order"] for i in inserts] == [0]
    assert all("id" not in i for i in inserts)
    assert deletes == ["lvl-2"]
