"""Test fixtures for Ledgerwise tests."""

from datetime import date
from typing import Callable

import pytest

from ledgerwise.database import Database
from ledgerwise.utils import add_months, month_start


USER_ID = "user-1"
OTHER_USER_ID = "user-2"


def _month_date(month_offset: int, day: int = 1) -> str:
    """Date in the month ``month_offset`` months from the current one."""
    return add_months(month_start(date.today()), month_offset).replace(day=day).isoformat()


@pytest.fixture
def month_date() -> Callable[..., str]:
    """Build ISO dates relative to the current month (day defaults to 1)."""
    return _month_date


@pytest.fixture
def db() -> Database:
    """Create in-memory database with schema."""
    database = Database(":memory:")
    database.init_schema()
    return database


@pytest.fixture
def populated_db(db: Database) -> Database:
    """In-memory database with three months of ledger history.

    user-1, per month (day 1 of the month, two months ago to current):
        income  Sales     "Client payment"  8000
        expense Office    "Rent"            2000
        expense Software  "Spotify"           15
        expense Meals     100 / 120 / 105 (different descriptions)

    user-2 has a single income transaction in the current month.
    """
    for offset in (-2, -1, 0):
        d = _month_date(offset)
        db.add_transaction(USER_ID, d, "Client payment", 8000, "Sales", "income")
        db.add_transaction(USER_ID, d, "Rent", 2000, "Office", "expense")
        db.add_transaction(USER_ID, d, "Spotify", 15, "Software", "expense")

    db.add_transaction(USER_ID, _month_date(-2), "Team lunch", 100, "Meals", "expense")
    db.add_transaction(USER_ID, _month_date(-1), "Client dinner", 120, "Meals", "expense")
    db.add_transaction(USER_ID, _month_date(0), "Pizza Friday", 105, "Meals", "expense")

    db.add_transaction(OTHER_USER_ID, _month_date(0), "Side gig", 500, "Sales", "income")
    return db
