"""Tests for BOM revision activation."""

import pytest

from app.core.errors import NotFoundError, ValidationError
from app.db.models.bom import BomRevision
from app.db.models.security_audit import AuditLog
from services.bom.registry import activate_revision, get_active, list_revisions

from conftest import ACTOR


class TestActivateRevision:
    def test_first_revision_is_active(self, db, make_material, make_bom):
        x = make_material("X")
        rev = make_bom("A", (x, 2))
        assert rev.revision_no == 1
        assert rev.is_active is True
        assert get_active(db, "A").id == rev.id

    def test_new_revision_replaces_active_one(self, db, make_material, make_bom):
        x = make_material("X")
        y = make_material("Y")
        r1 = make_bom("A", (x, 2))
        r2 = make_bom("A", (x, 2), (y, 1))
        r3 = make_bom("A", (y, 4))

        assert [r.revision_no for r in list_revisions(db, "A")] == [3, 2, 1]
        active = db.query(BomRevision).filter(BomRevision.model == "A", BomRevision.is_active == True).all()  # noqa: E712
        assert [r.id for r in active] == [r3.id]
        db.refresh(r1)
        db.refresh(r2)
        assert not r1.is_active and not r2.is_active

    def test_models_are_independent(self, db, make_material, make_bom):
        x = make_material("X")
        make_bom("A", (x, 1))
        b = make_bom("B", (x, 1))
        assert b.revision_no == 1
        assert get_active(db, "A") is not None

    def test_items_keep_order_and_flags(self, db, make_material, make_bom):
        x = make_material("X")
        y = make_material("Y")
        rev = make_bom("A", (y, 5, True), (x, 2))
        assert [it.material_id for it in rev.items] == [y.id, x.id]
        assert rev.items[0].is_critical is True

    def test_writes_audit_entry(self, db, make_material, make_bom):
        x = make_material("X")
        rev = make_bom("A", (x, 2))
        entry = db.query(AuditLog).filter(AuditLog.entity_id == rev.id).one()
        assert entry.action == "BOM_ACTIVATE"
        assert entry.payload["revision_no"] == 1


class TestValidation:
    def test_duplicate_material(self, db, make_material):
        x = make_material("X")
        items = [{"material_id": x.id, "quantity_per_unit": 1}, {"material_id": x.id, "quantity_per_unit": 2}]
        with pytest.raises(ValidationError):
            activate_revision(db, "A", items, actor=ACTOR)
        assert get_active(db, "A") is None

    @pytest.mark.parametrize("qpu", [0, -2])
    def test_non_positive_quantity(self, db, make_material, qpu):
        x = make_material("X")
        with pytest.raises(ValidationError):
            activate_revision(db, "A", [{"material_id": x.id, "quantity_per_unit": qpu}], actor=ACTOR)

    def test_unknown_material(self, db):
        with pytest.raises(NotFoundError):
            activate_revision(db, "A", [{"material_id": "nope", "quantity_per_unit": 1}], actor=ACTOR)

    def test_failed_activation_keeps_previous_active(self, db, make_material, make_bom):
        x = make_material("X")
        r1 = make_bom("A", (x, 1))
        with pytest.raises(ValidationError):
            activate_revision(db, "A", [{"material_id": x.id, "quantity_per_unit": 0}], actor=ACTOR)
        assert get_active(db, "A").id == r1.id
