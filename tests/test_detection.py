"""Tests for anomaly and recurring pattern detection."""

from datetime import date

import pytest

from ledgerwise.database import Database
from ledgerwise.detection import (
    anomalous_transactions,
    classify_frequency,
    detect_anomalies,
    detect_recurring,
    missed_recurring,
    next_expected_date,
    recurring_candidates,
)

from conftest import USER_ID


@pytest.fixture
def outlier_db(db: Database) -> Database:
    """Ten 100.00 office expenses and one 5000.00 outlier."""
    for day in range(1, 11):
        db.add_transaction(USER_ID, f"2026-01-{day:02d}", "Supplies", 100, "Office", "expense")
    db.add_transaction(USER_ID, "2026-01-15", "Standing desks", 5000, "Office", "expense")
    return db


class TestAnomalousTransactions:
    """Test anomalous_transactions."""

    def test_flags_only_outlier(self, outlier_db: Database):
        flagged = anomalous_transactions(outlier_db, USER_ID)

        assert len(flagged) == 1
        tx = flagged[0]
        assert tx["description"] == "Standing desks"
        # mean = 6000 / 11
        assert tx["category_mean"] == pytest.approx(545.45)
        assert tx["severity"] == pytest.approx(9.17)

    def test_threshold_multiplier(self, outlier_db: Database):
        assert anomalous_transactions(outlier_db, USER_ID, threshold_multiplier=10) == []

    def test_small_groups_ignored(self, db: Database):
        db.add_transaction(USER_ID, "2026-01-01", "Tiny", 1, "Misc", "expense")
        db.add_transaction(USER_ID, "2026-01-02", "Huge", 10000, "Misc", "expense")
        assert anomalous_transactions(db, USER_ID) == []

    def test_groups_by_category_and_type(self, outlier_db: Database):
        """Income in the same category does not dilute the expense mean."""
        for day in range(1, 4):
            outlier_db.add_transaction(USER_ID, f"2026-01-{day:02d}", "Refund", 5000, "Office", "income")

        flagged = anomalous_transactions(outlier_db, USER_ID)
        assert [tx["description"] for tx in flagged] == ["Standing desks"]


class TestDetectAnomalies:
    """Test detect_anomalies persistence."""

    def test_creates_anomaly_and_alert(self, outlier_db: Database):
        created = detect_anomalies(outlier_db, USER_ID)

        assert len(created) == 1
        assert created[0]["anomaly_type"] == "unusual_amount"
        anomalies = outlier_db.get_anomalies(USER_ID)
        assert len(anomalies) == 1
        assert "9.2x higher than average for Office" in anomalies[0]["description"]

        alerts = outlier_db.get_alerts(USER_ID)
        assert len(alerts) == 1
        assert alerts[0]["alert_type"] == "anomaly"
        assert alerts[0]["severity"] == "critical"
        assert alerts[0]["transaction_id"] == created[0]["transaction_id"]

    def test_warning_severity_below_five(self, db: Database):
        for day in range(1, 11):
            db.add_transaction(USER_ID, f"2026-01-{day:02d}", "Supplies", 100, "Office", "expense")
        db.add_transaction(USER_ID, "2026-01-15", "Printer", 400, "Office", "expense")
        # mean = 1400 / 11 = 127.27, ratio = 3.14

        detect_anomalies(db, USER_ID)

        assert db.get_alerts(USER_ID)[0]["severity"] == "warning"

    def test_idempotent(self, outlier_db: Database):
        detect_anomalies(outlier_db, USER_ID)
        assert detect_anomalies(outlier_db, USER_ID) == []

        assert outlier_db.count_table("anomalies") == 1
        assert outlier_db.count_table("alerts") == 1

    def test_reviewed_anomaly_not_recreated(self, outlier_db: Database):
        created = detect_anomalies(outlier_db, USER_ID)
        outlier_db.mark_anomaly_reviewed(USER_ID, created[0]["id"], false_positive=True)

        assert detect_anomalies(outlier_db, USER_ID) == []
        assert outlier_db.count_table("anomalies") == 1


class TestRecurring:
    """Test recurring pattern inference."""

    @pytest.fixture
    def spotify_db(self, db: Database) -> Database:
        for d in ("2025-01-01", "2025-02-01", "2025-03-01"):
            db.add_transaction(USER_ID, d, "Spotify", 15.99, "Software", "expense")
        return db

    def test_candidates(self, spotify_db: Database):
        candidates = recurring_candidates(spotify_db, USER_ID)

        assert len(candidates) == 1
        assert candidates[0]["occurrence_count"] == 3
        assert candidates[0]["first_date"] == "2025-01-01"
        assert candidates[0]["last_date"] == "2025-03-01"

    def test_two_occurrences_not_recurring(self, db: Database):
        db.add_transaction(USER_ID, "2025-01-01", "Spotify", 15.99, "Software", "expense")
        db.add_transaction(USER_ID, "2025-02-01", "Spotify", 15.99, "Software", "expense")
        assert recurring_candidates(db, USER_ID) == []

    def test_monthly_spotify(self, spotify_db: Database):
        result = detect_recurring(spotify_db, USER_ID)

        assert result["created"] == 1
        item = result["recurring"][0]
        assert item["frequency"] == "monthly"
        assert item["confidence"] == 0.3
        assert item["next_expected"] == "2025-04-01"

    def test_detect_recurring_refreshes(self, spotify_db: Database):
        detect_recurring(spotify_db, USER_ID)
        spotify_db.add_transaction(USER_ID, "2025-04-01", "Spotify", 15.99, "Software", "expense")

        result = detect_recurring(spotify_db, USER_ID)

        assert result["created"] == 0
        assert result["updated"] == 1
        rows = spotify_db.get_recurring_transactions(USER_ID)
        assert len(rows) == 1
        assert rows[0]["confidence"] == 0.4
        assert rows[0]["last_occurrence"] == "2025-04-01"

    def test_confidence_capped(self, db: Database):
        for month in range(1, 13):
            db.add_transaction(USER_ID, f"2025-{month:02d}-05", "Payroll", 3000, "Payroll", "expense")

        item = detect_recurring(db, USER_ID)["recurring"][0]
        assert item["confidence"] == 0.95

    @pytest.mark.parametrize(
        "gap,expected",
        [
            (1, "daily"),
            (2, "daily"),
            (7, "weekly"),
            (9, "weekly"),
            (30, "monthly"),
            (40, "monthly"),
            (91, "quarterly"),
            (120, "quarterly"),
            (365, "yearly"),
        ],
    )
    def test_classify_frequency(self, gap: float, expected: str):
        assert classify_frequency(gap) == expected

    @pytest.mark.parametrize(
        "last,frequency,expected",
        [
            ("2025-01-31", "daily", "2025-02-01"),
            ("2025-01-31", "weekly", "2025-02-07"),
            ("2025-01-31", "monthly", "2025-02-28"),
            ("2025-11-30", "quarterly", "2026-02-28"),
            ("2024-02-29", "yearly", "2025-02-28"),
        ],
    )
    def test_next_expected_date(self, last: str, frequency: str, expected: str):
        assert next_expected_date(last, frequency) == expected

    def test_next_expected_unknown_frequency(self):
        with pytest.raises(ValueError):
            next_expected_date("2025-01-01", "hourly")

    def test_missed_recurring(self, spotify_db: Database):
        detect_recurring(spotify_db, USER_ID)

        missed = missed_recurring(spotify_db, USER_ID, today=date(2025, 4, 10))

        assert len(missed) == 1
        assert missed[0]["days_overdue"] == 9
        assert missed_recurring(spotify_db, USER_ID, today=date(2025, 3, 20)) == []
