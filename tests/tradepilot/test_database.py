import sqlite3
from datetime import date

import pytest

from tradepilot.database import TradePilotDatabase

DAY = date(2026, 3, 15)


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "nested" / "tradepilot.db"


def test_initialize_creates_schema(db_path):
    TradePilotDatabase(db_path=str(db_path))

    conn = sqlite3.connect(str(db_path))
    try:
        tables = {row[0] for row in conn.execute("SELECT name FROM sqlite_master WHERE type='table'")}
        journal_mode = conn.execute("PRAGMA journal_mode").fetchone()[0]
    finally:
        conn.close()

    assert {"organizations", "usage_records", "subscriptions"} <= tables
    assert journal_mode == "wal"


def test_initialize_is_idempotent(db_path):
    db = TradePilotDatabase(db_path=db_path)
    db.increment_usage("org-1", DAY)

    db.initialize()

    assert db.get_usage_count("org-1", DAY) == 1


def test_missing_counter_reads_as_zero_without_creating_rows(db):
    assert db.get_usage_count("org-1", DAY) == 0
    assert db.list_usage("org-1") == []


def test_increment_is_an_upsert(db):
    assert db.increment_usage("org-1", DAY) == 1
    assert db.increment_usage("org-1", DAY) == 2
    assert db.increment_usage("org-2", DAY) == 1

    assert db.get_usage_count("org-1", DAY) == 2
    assert db.list_usage("org-1") == [{"usage_date": "2026-03-15", "analysis_count": 2}]


def test_decrement_never_goes_negative(db):
    db.increment_usage("org-1", DAY)

    assert db.decrement_usage("org-1", DAY) == 0
    assert db.decrement_usage("org-1", DAY) == 0


def test_try_increment_respects_limit(db):
    assert db.try_increment_usage("org-1", DAY, 2) == (True, 1)
    assert db.try_increment_usage("org-1", DAY, 2) == (True, 2)
    assert db.try_increment_usage("org-1", DAY, 2) == (False, 2)
    assert db.get_usage_count("org-1", DAY) == 2


def test_try_increment_unlimited(db):
    for expected in range(1, 6):
        assert db.try_increment_usage("org-1", DAY, -1) == (True, expected)


def test_sum_usage_since(db):
    db.increment_usage("org-1", date(2026, 3, 1))
    db.increment_usage("org-1", date(2026, 3, 10))
    db.increment_usage("org-1", date(2026, 3, 10))
    db.increment_usage("org-1", DAY)

    assert db.sum_usage_since("org-1", date(2026, 3, 10)) == 3
    assert db.sum_usage_since("org-1", date(2026, 1, 1)) == 4
    assert db.sum_usage_since("org-2", date(2026, 1, 1)) == 0
    assert [row["usage_date"] for row in db.list_usage("org-1", since=date(2026, 3, 2))] == [
        "2026-03-15",
        "2026-03-10",
    ]


def test_organization_upsert_and_plan(db):
    assert db.get_organization("org-1") is None

    db.upsert_organization("org-1", name="Acme Motors")
    assert db.get_organization("org-1")["plan"] == "FREE"

    db.set_plan("org-1", "PREMIUM")
    organization = db.get_organization("org-1")
    assert organization["plan"] == "PREMIUM"
    assert organization["name"] == "Acme Motors"

    subscription = db.get_subscription("org-1")
    assert subscription["plan"] == "PREMIUM"
    assert subscription["status"] == "ACTIVE"


def test_set_plan_creates_missing_organization(db):
    db.set_plan("org-new", "BASIC")
    db.set_plan("org-new", "BUSINESS")

    assert db.get_organization("org-new")["plan"] == "BUSINESS"
    assert db.get_subscription("org-new")["plan"] == "BUSINESS"
