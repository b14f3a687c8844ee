from datetime import date

from services.numbering import format_serial, next_serial, next_value


def test_serial_format():
    assert format_serial(date(2024, 3, 1), "GB-12", 7) == "20240301-GB-12-007"


def test_counters_are_per_date_and_model(db):
    d1, d2 = date(2024, 3, 1), date(2024, 3, 2)
    assert next_serial(db, d1, "A") == ("20240301-A-001", 1)
    assert next_serial(db, d1, "A") == ("20240301-A-002", 2)
    assert next_serial(db, d1, "B") == ("20240301-B-001", 1)
    assert next_serial(db, d2, "A") == ("20240302-A-001", 1)


def test_rolled_back_values_are_reused(db):
    assert next_value(db, "test", "k") == 1
    db.rollback()
    assert next_value(db, "test", "k") == 1
    db.commit()
    assert next_value(db, "test", "k") == 2
