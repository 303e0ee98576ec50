"""Tests for budget variance and goal progress."""

from datetime import date, datetime, timedelta

import pytest

from ledgerwise.budgets import (
    budget_alerts,
    budget_variance,
    check_goal_completion,
    evaluate_goal,
    goal_progress,
)
from ledgerwise.database import Database

from conftest import USER_ID


def _spend(db: Database, amount: float, category: str = "Marketing") -> None:
    db.add_transaction(USER_ID, date.today().replace(day=1).isoformat(), "Spend", amount, category, "expense")


class TestBudgetVariance:
    """Test budget_variance statuses."""

    @pytest.mark.parametrize(
        "actual,status,variance,variance_pct",
        [
            (1100, "over", -100, -10),
            (800, "under", 200, 20),
            (950, "on_track", 50, 5),
            (900, "on_track", 100, 10),
        ],
    )
    def test_status(self, db: Database, actual, status, variance, variance_pct):
        db.create_budget(USER_ID, "Marketing", 1000, alert_threshold=0.9)
        _spend(db, actual)

        today = date.today()
        result = budget_variance(db, USER_ID, today.replace(day=1).isoformat(), today.isoformat())

        assert len(result) == 1
        v = result[0]
        assert v["actual"] == actual
        assert v["status"] == status
        assert v["variance"] == variance
        assert v["variance_percentage"] == variance_pct

    def test_only_expenses_in_window_count(self, db: Database):
        db.create_budget(USER_ID, "Marketing", 1000)
        _spend(db, 300)
        db.add_transaction(USER_ID, "2020-01-01", "Old", 5000, "Marketing", "expense")
        db.add_transaction(USER_ID, date.today().replace(day=1).isoformat(), "Refund", 700, "Marketing", "income")

        today = date.today()
        v = budget_variance(db, USER_ID, today.replace(day=1).isoformat(), today.isoformat())[0]
        assert v["actual"] == 300

    def test_budget_alerts_filter(self, db: Database):
        db.create_budget(USER_ID, "Marketing", 1000)
        db.create_budget(USER_ID, "Software", 1000)
        db.create_budget(USER_ID, "Travel", 1000)
        _spend(db, 1100, "Marketing")
        _spend(db, 800, "Software")
        _spend(db, 950, "Travel")

        flagged = budget_alerts(db, USER_ID)

        assert sorted(v["budget"]["category"] for v in flagged) == ["Marketing", "Travel"]

    def test_no_budgets(self, db: Database):
        assert budget_alerts(db, USER_ID) == []


class TestGoals:
    """Test goal progress and completion."""

    def test_auto_completion(self, db: Database):
        goal_id = db.create_goal(USER_ID, "savings", 1000, current_amount=1000)

        result = goal_progress(db, USER_ID)

        assert [g["id"] for g in result["completed"]] == [goal_id]
        assert result["goals"] == []
        assert db.get_goal(goal_id)["status"] == "completed"

        again = goal_progress(db, USER_ID)
        assert again["completed"] == []
        assert again["goals"] == []

    def test_check_goal_completion_leaves_open_goals(self, db: Database):
        db.create_goal(USER_ID, "revenue", 1000, current_amount=999)
        assert check_goal_completion(db, USER_ID) == []

    def test_no_deadline_is_on_track(self, db: Database):
        db.create_goal(USER_ID, "savings", 1000, current_amount=10)

        goal = goal_progress(db, USER_ID)["goals"][0]

        assert goal["on_track"] is True
        assert goal["days_remaining"] is None
        assert goal["progress_percentage"] == 1.0
        assert goal["remaining_amount"] == 990

    def test_behind_schedule(self, db: Database):
        created = (datetime.now() - timedelta(days=90)).isoformat()
        deadline = (date.today() + timedelta(days=10)).isoformat()
        db.create_goal(USER_ID, "revenue", 10000, current_amount=1000, deadline=deadline, created_at=created)

        goal = goal_progress(db, USER_ID)["goals"][0]

        assert goal["days_remaining"] == 10
        assert goal["on_track"] is False

    def test_ahead_of_schedule(self, db: Database):
        created = (datetime.now() - timedelta(days=10)).isoformat()
        deadline = (date.today() + timedelta(days=90)).isoformat()
        db.create_goal(USER_ID, "revenue", 10000, current_amount=5000, deadline=deadline, created_at=created)

        goal = goal_progress(db, USER_ID)["goals"][0]
        assert goal["on_track"] is True

    def test_evaluate_goal_ninety_percent_rule(self):
        now = datetime(2026, 1, 11, 12, 0)
        goal = {
            "target_amount": 1000,
            "current_amount": 45,
            "deadline": "2026-04-01",
            "created_at": "2026-01-01T12:00:00",
        }
        # total 90 days (ceil of 89.5), elapsed 10 days: expected 11.1%, 90% of that is 10%
        assert evaluate_goal(goal, now)["on_track"] is False
        goal["current_amount"] = 105
        assert evaluate_goal(goal, now)["on_track"] is True
