import pytest

from app.core.errors import GuardViolationError, ValidationError
from app.db.models.common import utcnow
from services.qms.ncr import open_ncr, update_ncr

from conftest import ACTOR


def test_numbers_are_sequential_per_year(db):
    year = utcnow().year
    first = open_ncr(db, description="burr on flange", actor=ACTOR)
    second = open_ncr(db, description="wrong seal fitted", actor=ACTOR)
    assert first.ncr_number == f"NCR-{year}-0001"
    assert second.ncr_number == f"NCR-{year}-0002"


def test_description_is_required(db):
    with pytest.raises(ValidationError):
        open_ncr(db, description=" ", actor=ACTOR)


class TestUpdate:
    def test_moves_forward(self, db):
        ncr = open_ncr(db, description="burr on flange", actor=ACTOR)
        update_ncr(db, ncr.id, actor=ACTOR, status="analysis", root_cause="worn deburring tool")
        update_ncr(db, ncr.id, actor=ACTOR, status="action", corrective_action="replace tool every shift")
        update_ncr(db, ncr.id, actor=ACTOR, status="closed")
        assert ncr.status == "closed"
        assert ncr.closed_by == ACTOR
        assert ncr.closed_at is not None

    def test_can_skip_ahead(self, db):
        ncr = open_ncr(db, description="burr on flange", actor=ACTOR)
        update_ncr(db, ncr.id, actor=ACTOR, status="closed", corrective_action="reworked")
        assert ncr.status == "closed"

    def test_never_moves_back(self, db):
        ncr = open_ncr(db, description="burr on flange", actor=ACTOR)
        update_ncr(db, ncr.id, actor=ACTOR, status="action")
        with pytest.raises(GuardViolationError):
            update_ncr(db, ncr.id, actor=ACTOR, status="analysis")

    def test_closing_needs_corrective_action(self, db):
        ncr = open_ncr(db, description="burr on flange", actor=ACTOR)
        with pytest.raises(ValidationError):
            update_ncr(db, ncr.id, actor=ACTOR, status="closed")
        db.refresh(ncr)
        assert ncr.status == "open"

    def test_closed_is_final(self, db):
        ncr = open_ncr(db, description="burr on flange", actor=ACTOR)
        update_ncr(db, ncr.id, actor=ACTOR, status="closed", corrective_action="reworked")
        with pytest.raises(GuardViolationError):
            update_ncr(db, ncr.id, actor=ACTOR, root_cause="late edit")
