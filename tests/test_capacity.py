"""Tests for capacity and bottleneck computation."""

from decimal import Decimal

import pytest

from app.core.errors import ValidationError
from services.capacity.calculator import NO_BOM, get_capacity, needed_for_target, possible_units


def test_bottleneck_is_the_most_limiting_material(db, make_material, make_bom):
    x = make_material("X", stock=10)
    y = make_material("Y", stock=12)
    make_bom("A", (x, 2), (y, 5))

    cap = get_capacity(db, "A")
    assert cap["max_units"] == 2
    assert cap["bottleneck"]["code"] == "Y"
    assert {row["code"]: row["possible"] for row in cap["per_material"]} == {"X": 5, "Y": 2}


def test_tie_goes_to_first_item(db, make_material, make_bom):
    p = make_material("P", stock=6)
    q = make_material("Q", stock=9)
    make_bom("A", (q, 3), (p, 2))
    cap = get_capacity(db, "A")
    assert cap["max_units"] == 3
    assert cap["bottleneck"]["code"] == "Q"


def test_no_bom(db):
    cap = get_capacity(db, "UNKNOWN")
    assert cap["max_units"] == 0
    assert cap["bottleneck"] == NO_BOM
    assert cap["per_material"] == []


def test_empty_bom(db, make_bom):
    make_bom("E")
    cap = get_capacity(db, "E")
    assert cap["max_units"] == 0
    assert cap["bottleneck"] == NO_BOM


def test_zero_stock_gives_zero_units(db, make_material, make_bom):
    x = make_material("X")
    make_bom("A", (x, 1))
    assert get_capacity(db, "A")["max_units"] == 0


def test_projection_for_extra_units(db, make_material, make_bom):
    x = make_material("X", stock=10)
    y = make_material("Y", stock=12)
    make_bom("A", (x, 2), (y, 5))

    rows = {row["code"]: row for row in get_capacity(db, "A", extra=3)["per_material"]}
    # target = 2 + 3 = 5 units
    assert rows["X"]["needed_for_target"] == Decimal(0)
    assert rows["Y"]["needed_for_target"] == Decimal(13)


def test_negative_extra(db):
    with pytest.raises(ValidationError):
        get_capacity(db, "A", extra=-1)


def test_possible_units_floors():
    assert possible_units(Decimal("9.99"), Decimal("2.5")) == 3
    assert possible_units(Decimal(0), Decimal(1)) == 0


def test_needed_for_target_rounds_up_and_never_negative():
    assert needed_for_target(3, Decimal("1.5"), Decimal("4")) == Decimal(1)
    assert needed_for_target(1, Decimal("1"), Decimal("40")) == Decimal(0)
