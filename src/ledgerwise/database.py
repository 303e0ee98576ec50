"""SQLite database schema and CRUD operations for the ledger."""

import json
import logging
import sqlite3
import uuid
from datetime import date, timedelta
from pathlib import Path
from typing import Any

from .utils import month_key, now_iso, parse_date


logger = logging.getLogger(__name__)

TRANSACTION_TYPES = ("income", "expense")
BUDGET_PERIODS = ("monthly", "quarterly", "yearly")
GOAL_TYPES = ("revenue", "profit", "savings", "expense_reduction", "custom")
GOAL_STATUSES = ("active", "completed", "cancelled")
ALERT_TYPES = ("budget_overrun", "low_cash", "anomaly", "goal_progress", "trend", "custom")
ALERT_SEVERITIES = ("info", "warning", "critical")
NOTIFICATION_TYPES = ("info", "success", "warning", "error")
REPORT_TYPES = ("pdf", "csv", "summary")

SCHEMA = """
CREATE TABLE IF NOT EXISTS transactions (
    id          INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id     TEXT NOT NULL,
    date        TEXT NOT NULL,    -- 'YYYY-MM-DD'
    description TEXT NOT NULL,
    amount      REAL NOT NULL,    -- always positive, sign comes from type
    category    TEXT NOT NULL,
    type        TEXT NOT NULL CHECK(type IN ('income', 'expense')),
    created_at  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS budgets (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id         TEXT NOT NULL,
    category        TEXT NOT NULL,
    amount          REAL NOT NULL,
    period          TEXT NOT NULL CHECK(period IN ('monthly', 'quarterly', 'yearly')),
    start_date      TEXT NOT NULL,
    end_date        TEXT,           -- NULL: open-ended
    alert_threshold REAL DEFAULT 0.9,
    created_at      TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS financial_goals (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id        TEXT NOT NULL,
    goal_type      TEXT NOT NULL,
    target_amount  REAL NOT NULL,
    current_amount REAL DEFAULT 0,
    deadline       TEXT,
    description    TEXT,
    status         TEXT DEFAULT 'active' CHECK(status IN ('active', 'completed', 'cancelled')),
    created_at     TEXT NOT NULL,
    updated_at     TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS alerts (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id        TEXT NOT NULL,
    alert_type     TEXT NOT NULL,
    severity       TEXT NOT NULL CHECK(severity IN ('info', 'warning', 'critical')),
    title          TEXT NOT NULL,
    message        TEXT NOT NULL,
    data           TEXT,      -- JSON payload, never queried
    category       TEXT,      -- discriminator: budget alerts
    goal_id        INTEGER,   -- discriminator: goal alerts
    transaction_id INTEGER,   -- discriminator: anomaly alerts
    metric         TEXT,      -- discriminator: trend alerts ('income', 'expenses')
    milestone      INTEGER,   -- goal milestone percentage
    read           INTEGER DEFAULT 0,
    dismissed      INTEGER DEFAULT 0,
    created_at     TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS anomalies (
    id             INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id        TEXT NOT NULL,
    transaction_id INTEGER,
    anomaly_type   TEXT NOT NULL,
    severity       REAL NOT NULL,  -- ratio to category mean
    description    TEXT NOT NULL,
    reviewed       INTEGER DEFAULT 0,
    false_positive INTEGER DEFAULT 0,
    detected_at    TEXT NOT NULL,
    FOREIGN KEY (transaction_id) REFERENCES transactions(id)
);

CREATE TABLE IF NOT EXISTS recurring_transactions (
    id              INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id         TEXT NOT NULL,
    description     TEXT NOT NULL,
    amount          REAL NOT NULL,
    category        TEXT NOT NULL,
    type            TEXT NOT NULL,
    frequency       TEXT NOT NULL,
    confidence      REAL DEFAULT 0,
    last_occurrence TEXT,
    next_expected   TEXT,
    detected_at     TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS cash_flow_forecasts (
    id                 INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id            TEXT NOT NULL,
    forecast_date      TEXT NOT NULL,  -- 'YYYY-MM'
    projected_income   REAL NOT NULL,
    projected_expenses REAL NOT NULL,
    projected_balance  REAL NOT NULL,
    confidence_level   REAL DEFAULT 0,
    assumptions        TEXT,
    created_at         TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS conversations (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id    TEXT NOT NULL,
    message_id TEXT NOT NULL,
    role       TEXT NOT NULL CHECK(role IN ('user', 'model')),
    content    TEXT NOT NULL,
    metadata   TEXT,  -- JSON
    timestamp  TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS notifications (
    id         INTEGER PRIMARY KEY AUTOINCREMENT,
    user_id    TEXT NOT NULL,
    title      TEXT NOT NULL,
    message    TEXT NOT NULL,
    type       TEXT NOT NULL CHECK(type IN ('info', 'success', 'warning', 'error')),
    read       INTEGER DEFAULT 0,
    created_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS reports (
    id         TEXT PRIMARY KEY,  -- UUID
    user_id    TEXT NOT NULL,
    type       TEXT NOT NULL,
    status     TEXT NOT NULL CHECK(status IN ('pending', 'processing', 'completed', 'failed')),
    date_range TEXT NOT NULL,
    created_at TEXT NOT NULL
);
"""

INDEXES = """
CREATE INDEX IF NOT EXISTS idx_tx_user_date ON transactions(user_id, date);
CREATE INDEX IF NOT EXISTS idx_tx_category ON transactions(user_id, category, type);
CREATE INDEX IF NOT EXISTS idx_budgets_user ON budgets(user_id);
CREATE INDEX IF NOT EXISTS idx_goals_user_status ON financial_goals(user_id, status);
CREATE INDEX IF NOT EXISTS idx_alerts_user_type ON alerts(user_id, alert_type);
CREATE INDEX IF NOT EXISTS idx_anomalies_user ON anomalies(user_id);
CREATE INDEX IF NOT EXISTS idx_anomalies_transaction ON anomalies(transaction_id);
CREATE INDEX IF NOT EXISTS idx_recurring_user ON recurring_transactions(user_id);
CREATE INDEX IF NOT EXISTS idx_forecast_user_date ON cash_flow_forecasts(user_id, forecast_date);
CREATE INDEX IF NOT EXISTS idx_conv_user_ts ON conversations(user_id, timestamp);
CREATE INDEX IF NOT EXISTS idx_notif_user ON notifications(user_id);
"""


class ValidationError(ValueError):
    """Missing or malformed field in a write request."""

    pass


class OwnershipError(PermissionError):
    """Caller does not own the resource it tries to change."""

    pass


def _require_text(value: Any, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required")
    return value.strip()


def _require_positive(value: Any, field: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError):
        raise ValidationError(f"{field} must be a number") from None
    if number <= 0:
        raise ValidationError(f"{field} must be greater than 0")
    return number


def _require_date(value: Any, field: str) -> str:
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a YYYY-MM-DD string")
    try:
        return parse_date(value).isoformat()
    except ValueError:
        raise ValidationError(f"{field} must be a YYYY-MM-DD string") from None


def _require_choice(value: Any, choices: tuple[str, ...], field: str) -> str:
    if value not in choices:
        raise ValidationError(f"{field} must be one of: {', '.join(choices)}")
    return value


def _load_json(value: str | None) -> Any:
    if not value:
        return None
    try:
        return json.loads(value)
    except ValueError:
        return None


class Database:
    """SQLite database wrapper for the ledger and everything derived from it."""

    def __init__(self, db_path: str | Path | None = None):
        """Initialize database connection.

        Args:
            db_path: Path to SQLite file, or None/":memory:" for in-memory DB.
        """
        if db_path is None:
            db_path = ":memory:"
        self.db_path = str(db_path)
        self._conn: sqlite3.Connection | None = None

    def connect(self) -> sqlite3.Connection:
        """Get or create database connection."""
        if self._conn is None:
            self._conn = sqlite3.connect(self.db_path, check_same_thread=False)
            self._conn.row_factory = sqlite3.Row
            # Enable WAL mode for better concurrency (only for file-based DBs)
            if self.db_path != ":memory:":
                self._conn.execute("PRAGMA journal_mode=WAL")
        return self._conn

    def close(self) -> None:
        """Close database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None

    def init_schema(self) -> None:
        """Create all tables and indexes."""
        conn = self.connect()
        conn.executescript(SCHEMA)
        conn.executescript(INDEXES)
        conn.commit()

    def count_table(self, table: str) -> int:
        """Count rows in a table."""
        conn = self.connect()
        row = conn.execute(f"SELECT COUNT(*) as cnt FROM {table}").fetchone()  # noqa: S608
        return row["cnt"]

    def _require_owned(self, table: str, row_id: int | str, user_id: str) -> dict[str, Any]:
        """Load a row by id and check it belongs to ``user_id``."""
        conn = self.connect()
        row = conn.execute(
            f"SELECT * FROM {table} WHERE id = ?", (row_id,)  # noqa: S608
        ).fetchone()
        if row is None:
            raise ValidationError(f"{table} row {row_id} not found")
        if row["user_id"] != user_id:
            raise OwnershipError(f"{table} row {row_id} belongs to another user")
        return dict(row)

    # -------------------------------------------------------------------------
    # Transactions
    # -------------------------------------------------------------------------

    def add_transaction(
        self,
        user_id: str,
        date: str,
        description: str,
        amount: float,
        category: str,
        tx_type: str,
    ) -> int:
        """Validate and insert a transaction.

        Returns:
            New transaction id.

        Raises:
            ValidationError: If any field is missing or malformed.
        """
        values = (
            _require_text(user_id, "user_id"),
            _require_date(date, "date"),
            _require_text(description, "description"),
            _require_positive(amount, "amount"),
            _require_text(category, "category"),
            _require_choice(tx_type, TRANSACTION_TYPES, "type"),
            now_iso(),
        )
        conn = self.connect()
        cursor = conn.execute(
            """
            INSERT INTO transactions
            (user_id, date, description, amount, category, type, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            values,
        )
        conn.commit()
        return cursor.lastrowid

    def get_transaction(self, tx_id: int) -> dict[str, Any] | None:
        """Get a transaction by id."""
        conn = self.connect()
        row = conn.execute("SELECT * FROM transactions WHERE id = ?", (tx_id,)).fetchone()
        return dict(row) if row else None

    def update_transaction(self, user_id: str, tx_id: int, **fields: Any) -> None:
        """Update selected fields of an owned transaction.

        Accepted fields: date, description, amount, category, type.
        """
        current = self._require_owned("transactions", tx_id, user_id)
        merged = {
            "date": _require_date(fields.get("date", current["date"]), "date"),
            "description": _require_text(
                fields.get("description", current["description"]), "description"
            ),
            "amount": _require_positive(fields.get("amount", current["amount"]), "amount"),
            "category": _require_text(fields.get("category", current["category"]), "category"),
            "type": _require_choice(
                fields.get("type", current["type"]), TRANSACTION_TYPES, "type"
            ),
        }
        conn = self.connect()
        conn.execute(
            """
            UPDATE transactions
            SET date = ?, description = ?, amount = ?, category = ?, type = ?
            WHERE id = ?
            """,
            (
                merged["date"],
                merged["description"],
                merged["amount"],
                merged["category"],
                merged["type"],
                tx_id,
            ),
        )
        conn.commit()

    def delete_transaction(self, user_id: str, tx_id: int) -> None:
        """Delete an owned transaction."""
        self._require_owned("transactions", tx_id, user_id)
        conn = self.connect()
        conn.execute("DELETE FROM transactions WHERE id = ?", (tx_id,))
        conn.commit()

    def get_transactions(
        self,
        user_id: str,
        start_date: str | None = None,
        end_date: str | None = None,
        category: str | None = None,
        tx_type: str | None = None,
        min_amount: float | None = None,
        max_amount: float | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Query transactions, newest first."""
        query = "SELECT * FROM transactions WHERE user_id = ?"
        params: list[Any] = [user_id]

        if start_date:
            query += " AND date >= ?"
            params.append(start_date)
        if end_date:
            query += " AND date <= ?"
            params.append(end_date)
        if category:
            query += " AND category = ?"
            params.append(category)
        if tx_type:
            query += " AND type = ?"
            params.append(tx_type)
        if min_amount is not None:
            query += " AND amount >= ?"
            params.append(min_amount)
        if max_amount is not None:
            query += " AND amount <= ?"
            params.append(max_amount)

        query += " ORDER BY date DESC, created_at DESC, id DESC"
        if limit is not None:
            query += " LIMIT ?"
            params.append(limit)

        conn = self.connect()
        return [dict(row) for row in conn.execute(query, params).fetchall()]

    def get_recent_transactions(self, user_id: str, limit: int = 10) -> list[dict[str, Any]]:
        """Most recent transactions by date."""
        return self.get_transactions(user_id, limit=limit)

    def bulk_update_category(self, user_id: str, vendor: str, new_category: str) -> int:
        """Recategorize every transaction whose description contains ``vendor``.

        Returns:
            Number of updated rows.
        """
        vendor = _require_text(vendor, "vendor")
        new_category = _require_text(new_category, "new_category")
        conn = self.connect()
        cursor = conn.execute(
            """
            UPDATE transactions
            SET category = ?
            WHERE user_id = ? AND description LIKE ?
            """,
            (new_category, user_id, f"%{vendor}%"),
        )
        conn.commit()
        return cursor.rowcount

    # -------------------------------------------------------------------------
    # Budgets
    # -------------------------------------------------------------------------

    def create_budget(
        self,
        user_id: str,
        category: str,
        amount: float,
        period: str = "monthly",
        start_date: str | None = None,
        end_date: str | None = None,
        alert_threshold: float = 0.9,
    ) -> int:
        """Insert a budget; start_date defaults to the first of this month."""
        if start_date is None:
            start_date = date.today().replace(day=1).isoformat()
        if not 0 < float(alert_threshold) <= 1:
            raise ValidationError("alert_threshold must be in (0, 1]")
        values = (
            _require_text(user_id, "user_id"),
            _require_text(category, "category"),
            _require_positive(amount, "amount"),
            _require_choice(period, BUDGET_PERIODS, "period"),
            _require_date(start_date, "start_date"),
            _require_date(end_date, "end_date") if end_date else None,
            float(alert_threshold),
            now_iso(),
        )
        conn = self.connect()
        cursor = conn.execute(
            """
            INSERT INTO budgets
            (user_id, category, amount, period, start_date, end_date, alert_threshold, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            values,
        )
        conn.commit()
        return cursor.lastrowid

    def get_budgets(self, user_id: str) -> list[dict[str, Any]]:
        """All budgets of a user."""
        conn = self.connect()
        rows = conn.execute(
            "SELECT * FROM budgets WHERE user_id = ? ORDER BY created_at DESC", (user_id,)
        ).fetchall()
        return [dict(row) for row in rows]

    def get_active_budgets(self, user_id: str, on_date: str | None = None) -> list[dict[str, Any]]:
        """Budgets whose window contains ``on_date`` (default today)."""
        on_date = on_date or date.today().isoformat()
        conn = self.connect()
        rows = conn.execute(
            """
            SELECT * FROM budgets
            WHERE user_id = ?
              AND start_date <= ?
              AND (end_date IS NULL OR end_date >= ?)
            ORDER BY category
            """,
            (user_id, on_date, on_date),
        ).fetchall()
        return [dict(row) for row in rows]

    def delete_budget(self, user_id: str, budget_id: int) -> None:
        """Delete an owned budget."""
        self._require_owned("budgets", budget_id, user_id)
        conn = self.connect()
        conn.execute("DELETE FROM budgets WHERE id = ?", (budget_id,))
        conn.commit()

    # -------------------------------------------------------------------------
    # Goals
    # -------------------------------------------------------------------------

    def create_goal(
        self,
        user_id: str,
        goal_type: str,
        target_amount: float,
        current_amount: float = 0.0,
        deadline: str | None = None,
        description: str | None = None,
        created_at: str | None = None,
    ) -> int:
        """Insert an active goal."""
        if float(current_amount) < 0:
            raise ValidationError("current_amount must not be negative")
        created_at = created_at or now_iso()
        values = (
            _require_text(user_id, "user_id"),
            _require_choice(goal_type, GOAL_TYPES, "goal_type"),
            _require_positive(target_amount, "target_amount"),
            float(current_amount),
            _require_date(deadline, "deadline") if deadline else None,
            description,
            created_at,
            created_at,
        )
        conn = self.connect()
        cursor = conn.execute(
            """
            INSERT INTO financial_goals
            (user_id, goal_type, target_amount, current_amount, deadline, description,
             status, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, 'active', ?, ?)
            """,
            values,
        )
        conn.commit()
        return cursor.lastrowid

    def get_goals(self, user_id: str, status: str | None = None) -> list[dict[str, Any]]:
        """Goals of a user, optionally filtered by status."""
        query = "SELECT * FROM financial_goals WHERE user_id = ?"
        params: list[Any] = [user_id]
        if status:
            query += " AND status = ?"
            params.append(status)
        query += " ORDER BY created_at DESC, id DESC"
        conn = self.connect()
        return [dict(row) for row in conn.execute(query, params).fetchall()]

    def get_goal(self, goal_id: int) -> dict[str, Any] | None:
        """Get a goal by id."""
        conn = self.connect()
        row = conn.execute("SELECT * FROM financial_goals WHERE id = ?", (goal_id,)).fetchone()
        return dict(row) if row else None

    def update_goal_progress(self, user_id: str, goal_id: int, current_amount: float) -> None:
        """Record progress on an owned goal."""
        self._require_owned("financial_goals", goal_id, user_id)
        if float(current_amount) < 0:
            raise ValidationError("current_amount must not be negative")
        conn = self.connect()
        conn.execute(
            "UPDATE financial_goals SET current_amount = ?, updated_at = ? WHERE id = ?",
            (float(current_amount), now_iso(), goal_id),
        )
        conn.commit()

    def set_goal_status(self, goal_id: int, status: str) -> None:
        """Change goal status."""
        _require_choice(status, GOAL_STATUSES, "status")
        conn = self.connect()
        conn.execute(
            "UPDATE financial_goals SET status = ?, updated_at = ? WHERE id = ?",
            (status, now_iso(), goal_id),
        )
        conn.commit()

    # -------------------------------------------------------------------------
    # Alerts
    # -------------------------------------------------------------------------

    def create_alert(
        self,
        user_id: str,
        alert_type: str,
        severity: str,
        title: str,
        message: str,
        data: dict[str, Any] | None = None,
        category: str | None = None,
        goal_id: int | None = None,
        transaction_id: int | None = None,
        metric: str | None = None,
        milestone: int | None = None,
    ) -> int:
        """Insert an alert with its discriminator columns."""
        _require_choice(alert_type, ALERT_TYPES, "alert_type")
        _require_choice(severity, ALERT_SEVERITIES, "severity")
        conn = self.connect()
        cursor = conn.execute(
            """
            INSERT INTO alerts
            (user_id, alert_type, severity, title, message, data, category, goal_id,
             transaction_id, metric, milestone, read, dismissed, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, 0, 0, ?)
            """,
            (
                user_id,
                alert_type,
                severity,
                title,
                message,
                json.dumps(data, ensure_ascii=False) if data is not None else None,
                category,
                goal_id,
                transaction_id,
                metric,
                milestone,
                now_iso(),
            ),
        )
        conn.commit()
        return cursor.lastrowid

    def get_alerts(
        self,
        user_id: str,
        include_read: bool = False,
        include_dismissed: bool = False,
    ) -> list[dict[str, Any]]:
        """Alerts of a user, newest first, with ``data`` decoded."""
        query = "SELECT * FROM alerts WHERE user_id = ?"
        if not include_read:
            query += " AND read = 0"
        if not include_dismissed:
            query += " AND dismissed = 0"
        query += " ORDER BY created_at DESC, id DESC"

        conn = self.connect()
        alerts = []
        for row in conn.execute(query, (user_id,)).fetchall():
            alert = dict(row)
            alert["data"] = _load_json(alert["data"])
            alerts.append(alert)
        return alerts

    def has_alert(
        self,
        user_id: str,
        alert_type: str,
        on_date: str | None = None,
        **discriminators: Any,
    ) -> bool:
        """Check whether an alert with the given discriminators exists.

        Args:
            user_id: Owner.
            alert_type: Alert type.
            on_date: Restrict to alerts created on this day ('YYYY-MM-DD').
                None searches all days.
            **discriminators: Column filters among category, goal_id,
                transaction_id, metric, milestone.

        Returns:
            True if at least one matching alert exists (read and dismissed
            alerts included).
        """
        query = "SELECT 1 FROM alerts WHERE user_id = ? AND alert_type = ?"
        params: list[Any] = [user_id, alert_type]

        if on_date:
            query += " AND substr(created_at, 1, 10) = ?"
            params.append(on_date)

        for column in ("category", "goal_id", "transaction_id", "metric", "milestone"):
            if column in discriminators:
                value = discriminators.pop(column)
                if value is None:
                    query += f" AND {column} IS NULL"
                else:
                    query += f" AND {column} = ?"
                    params.append(value)
        if discriminators:
            raise ValueError(f"Unknown alert discriminators: {sorted(discriminators)}")

        conn = self.connect()
        return conn.execute(query + " LIMIT 1", params).fetchone() is not None

    def mark_alert_read(self, user_id: str, alert_id: int) -> None:
        """Mark an owned alert as read."""
        self._require_owned("alerts", alert_id, user_id)
        conn = self.connect()
        conn.execute("UPDATE alerts SET read = 1 WHERE id = ?", (alert_id,))
        conn.commit()

    def dismiss_alert(self, user_id: str, alert_id: int) -> None:
        """Dismiss an owned alert."""
        self._require_owned("alerts", alert_id, user_id)
        conn = self.connect()
        conn.execute("UPDATE alerts SET dismissed = 1 WHERE id = ?", (alert_id,))
        conn.commit()

    def clear_old_alerts(self, user_id: str, days_old: int = 30) -> int:
        """Delete handled (read or dismissed) alerts older than ``days_old`` days."""
        cutoff = (date.today() - timedelta(days=days_old)).isoformat()
        conn = self.connect()
        cursor = conn.execute(
            """
            DELETE FROM alerts
            WHERE user_id = ?
              AND substr(created_at, 1, 10) < ?
              AND (read = 1 OR dismissed = 1)
            """,
            (user_id, cutoff),
        )
        conn.commit()
        return cursor.rowcount

    # -------------------------------------------------------------------------
    # Anomalies
    # -------------------------------------------------------------------------

    def create_anomaly(
        self,
        user_id: str,
        transaction_id: int,
        severity: float,
        description: str,
        anomaly_type: str = "unusual_amount",
    ) -> int:
        """Insert an unreviewed anomaly."""
        conn = self.connect()
        cursor = conn.execute(
            """
            INSERT INTO anomalies
            (user_id, transaction_id, anomaly_type, severity, description,
             reviewed, false_positive, detected_at)
            VALUES (?, ?, ?, ?, ?, 0, 0, ?)
            """,
            (user_id, transaction_id, anomaly_type, severity, description, now_iso()),
        )
        conn.commit()
        return cursor.lastrowid

    def get_anomalies(self, user_id: str, include_reviewed: bool = False) -> list[dict[str, Any]]:
        """Anomalies of a user, most severe first."""
        query = "SELECT * FROM anomalies WHERE user_id = ?"
        if not include_reviewed:
            query += " AND reviewed = 0"
        query += " ORDER BY severity DESC, detected_at DESC"
        conn = self.connect()
        return [dict(row) for row in conn.execute(query, (user_id,)).fetchall()]

    def has_anomaly_for_transaction(self, user_id: str, transaction_id: int) -> bool:
        """Whether a transaction was already flagged (reviewed or not)."""
        conn = self.connect()
        row = conn.execute(
            "SELECT 1 FROM anomalies WHERE user_id = ? AND transaction_id = ? LIMIT 1",
            (user_id, transaction_id),
        ).fetchone()
        return row is not None

    def mark_anomaly_reviewed(
        self, user_id: str, anomaly_id: int, false_positive: bool = False
    ) -> None:
        """Reviewer action on an owned anomaly."""
        self._require_owned("anomalies", anomaly_id, user_id)
        conn = self.connect()
        conn.execute(
            "UPDATE anomalies SET reviewed = 1, false_positive = ? WHERE id = ?",
            (1 if false_positive else 0, anomaly_id),
        )
        conn.commit()

    # -------------------------------------------------------------------------
    # Recurring transactions
    # -------------------------------------------------------------------------

    def get_recurring_transactions(self, user_id: str) -> list[dict[str, Any]]:
        """Stored recurring patterns, most confident first."""
        conn = self.connect()
        rows = conn.execute(
            """
            SELECT * FROM recurring_transactions
            WHERE user_id = ?
            ORDER BY confidence DESC, detected_at DESC
            """,
            (user_id,),
        ).fetchall()
        return [dict(row) for row in rows]

    def find_recurring(
        self, user_id: str, description: str, category: str
    ) -> dict[str, Any] | None:
        """Stored pattern for a (description, category) pair."""
        conn = self.connect()
        row = conn.execute(
            """
            SELECT * FROM recurring_transactions
            WHERE user_id = ? AND description = ? AND category = ?
            LIMIT 1
            """,
            (user_id, description, category),
        ).fetchone()
        return dict(row) if row else None

    def upsert_recurring(self, user_id: str, item: dict[str, Any]) -> bool:
        """Insert a recurring pattern or refresh the stored one.

        Args:
            user_id: Owner.
            item: Dict with description, amount, category, type, frequency,
                confidence, last_occurrence, next_expected.

        Returns:
            True if a new row was created, False if an existing row was updated.
        """
        existing = self.find_recurring(user_id, item["description"], item["category"])
        conn = self.connect()
        if existing:
            conn.execute(
                """
                UPDATE recurring_transactions
                SET amount = ?, type = ?, frequency = ?, confidence = ?,
                    last_occurrence = ?, next_expected = ?
                WHERE id = ?
                """,
                (
                    item["amount"],
                    item["type"],
                    item["frequency"],
                    item["confidence"],
                    item.get("last_occurrence"),
                    item.get("next_expected"),
                    existing["id"],
                ),
            )
            conn.commit()
            return False

        conn.execute(
            """
            INSERT INTO recurring_transactions
            (user_id, description, amount, category, type, frequency, confidence,
             last_occurrence, next_expected, detected_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                user_id,
                item["description"],
                item["amount"],
                item["category"],
                item["type"],
                item["frequency"],
                item["confidence"],
                item.get("last_occurrence"),
                item.get("next_expected"),
                now_iso(),
            ),
        )
        conn.commit()
        return True

    def get_missed_recurring(self, user_id: str, on_date: str | None = None) -> list[dict[str, Any]]:
        """Recurring patterns whose next occurrence is overdue."""
        on_date = on_date or date.today().isoformat()
        conn = self.connect()
        rows = conn.execute(
            """
            SELECT * FROM recurring_transactions
            WHERE user_id = ?
              AND next_expected IS NOT NULL
              AND next_expected < ?
            ORDER BY next_expected ASC
            """,
            (user_id, on_date),
        ).fetchall()
        return [dict(row) for row in rows]

    # -------------------------------------------------------------------------
    # Cash-flow forecasts
    # -------------------------------------------------------------------------

    def save_forecast(
        self,
        user_id: str,
        forecast_date: str,
        projected_income: float,
        projected_expenses: float,
        projected_balance: float,
        confidence_level: float,
        assumptions: str,
    ) -> int:
        """Append one projected month to the forecast audit trail."""
        conn = self.connect()
        cursor = conn.execute(
            """
            INSERT INTO cash_flow_forecasts
            (user_id, forecast_date, projected_income, projected_expenses,
             projected_balance, confidence_level, assumptions, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                user_id,
                forecast_date,
                projected_income,
                projected_expenses,
                projected_balance,
                confidence_level,
                assumptions,
                now_iso(),
            ),
        )
        conn.commit()
        return cursor.lastrowid

    def get_forecasts(self, user_id: str, limit: int = 12) -> list[dict[str, Any]]:
        """Stored forecast rows in month order."""
        conn = self.connect()
        rows = conn.execute(
            """
            SELECT * FROM cash_flow_forecasts
            WHERE user_id = ?
            ORDER BY forecast_date ASC, id ASC
            LIMIT ?
            """,
            (user_id, limit),
        ).fetchall()
        return [dict(row) for row in rows]

    def clear_old_forecasts(self, user_id: str) -> int:
        """Prune forecast rows for months before the current one."""
        conn = self.connect()
        cursor = conn.execute(
            "DELETE FROM cash_flow_forecasts WHERE user_id = ? AND forecast_date < ?",
            (user_id, month_key(date.today())),
        )
        conn.commit()
        return cursor.rowcount

    # -------------------------------------------------------------------------
    # Conversations
    # -------------------------------------------------------------------------

    def save_message(
        self,
        user_id: str,
        role: str,
        content: str,
        metadata: dict[str, Any] | None = None,
    ) -> str:
        """Append a message to the conversation log.

        Returns:
            Generated message id (UUID).
        """
        _require_choice(role, ("user", "model"), "role")
        message_id = str(uuid.uuid4())
        conn = self.connect()
        conn.execute(
            """
            INSERT INTO conversations (user_id, message_id, role, content, metadata, timestamp)
            VALUES (?, ?, ?, ?, ?, ?)
            """,
            (
                user_id,
                message_id,
                role,
                content,
                json.dumps(metadata, ensure_ascii=False) if metadata else None,
                now_iso(),
            ),
        )
        conn.commit()
        return message_id

    def get_conversation_history(self, user_id: str, limit: int = 20) -> list[dict[str, Any]]:
        """Last ``limit`` messages in chronological order."""
        conn = self.connect()
        rows = conn.execute(
            """
            SELECT id, message_id, role, content, metadata, timestamp
            FROM conversations
            WHERE user_id = ?
            ORDER BY timestamp DESC, id DESC
            LIMIT ?
            """,
            (user_id, limit),
        ).fetchall()
        messages = []
        for row in reversed(rows):
            message = dict(row)
            message["metadata"] = _load_json(message["metadata"])
            messages.append(message)
        return messages

    def get_all_conversations(self, user_id: str) -> list[dict[str, Any]]:
        """Conversation sessions grouped by day, latest first."""
        conn = self.connect()
        rows = conn.execute(
            """
            SELECT
                substr(timestamp, 1, 10) as date,
                MIN(timestamp) as first_message,
                MAX(timestamp) as last_message,
                COUNT(*) as message_count
            FROM conversations
            WHERE user_id = ?
            GROUP BY substr(timestamp, 1, 10)
            ORDER BY last_message DESC
            """,
            (user_id,),
        ).fetchall()
        return [dict(row) for row in rows]

    def clear_conversation(self, user_id: str) -> int:
        """Delete the whole conversation log of a user."""
        conn = self.connect()
        cursor = conn.execute("DELETE FROM conversations WHERE user_id = ?", (user_id,))
        conn.commit()
        return cursor.rowcount

    # -------------------------------------------------------------------------
    # Notifications and reports
    # -------------------------------------------------------------------------

    def create_notification(
        self, user_id: str, title: str, message: str, notification_type: str = "info"
    ) -> int:
        """Insert an in-app notification."""
        _require_choice(notification_type, NOTIFICATION_TYPES, "type")
        conn = self.connect()
        cursor = conn.execute(
            """
            INSERT INTO notifications (user_id, title, message, type, read, created_at)
            VALUES (?, ?, ?, ?, 0, ?)
            """,
            (user_id, title, message, notification_type, now_iso()),
        )
        conn.commit()
        return cursor.lastrowid

    def get_notifications(self, user_id: str, unread_only: bool = False) -> list[dict[str, Any]]:
        """Notifications of a user, newest first."""
        query = "SELECT * FROM notifications WHERE user_id = ?"
        if unread_only:
            query += " AND read = 0"
        query += " ORDER BY created_at DESC, id DESC"
        conn = self.connect()
        return [dict(row) for row in conn.execute(query, (user_id,)).fetchall()]

    def create_report(self, user_id: str, report_type: str, date_range: str) -> str:
        """Record a pending report request for the report service.

        Returns:
            Report id (UUID).
        """
        _require_choice(report_type, REPORT_TYPES, "type")
        report_id = str(uuid.uuid4())
        conn = self.connect()
        conn.execute(
            """
            INSERT INTO reports (id, user_id, type, status, date_range, created_at)
            VALUES (?, ?, ?, 'pending', ?, ?)
            """,
            (report_id, user_id, report_type, date_range, now_iso()),
        )
        conn.commit()
        logger.info("Report %s (%s) queued for user %s", report_id, report_type, user_id)
        return report_id
