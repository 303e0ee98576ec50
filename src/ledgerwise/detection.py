"""Anomaly and recurring-pattern detection over the transaction ledger."""

import logging
from datetime import date, timedelta
from typing import Any

from .database import Database
from .utils import add_months, parse_date


logger = logging.getLogger(__name__)

DEFAULT_THRESHOLD_MULTIPLIER = 3.0
CRITICAL_SEVERITY_RATIO = 5.0
MIN_OCCURRENCES = 3


def anomalous_transactions(
    db: Database,
    user_id: str,
    threshold_multiplier: float = DEFAULT_THRESHOLD_MULTIPLIER,
) -> list[dict[str, Any]]:
    """Find transactions far above their (category, type) average.

    Only groups with at least 3 transactions are considered. The mean
    includes every transaction of the group, the outlier itself too.

    Args:
        db: Database instance.
        user_id: Owner.
        threshold_multiplier: A transaction is flagged when its amount exceeds
            mean * threshold_multiplier.

    Returns:
        Transaction dicts extended with category_mean and severity
        (amount / mean), largest first within each group.
    """
    conn = db.connect()

    stats = conn.execute("""
        SELECT category, type, AVG(amount) as avg_amount, COUNT(*) as count
        FROM transactions
        WHERE user_id = ?
        GROUP BY category, type
        HAVING count >= ?
    """, (user_id, MIN_OCCURRENCES)).fetchall()

    flagged = []
    for stat in stats:
        mean = stat["avg_amount"]
        rows = conn.execute("""
            SELECT * FROM transactions
            WHERE user_id = ? AND category = ? AND type = ? AND amount > ?
            ORDER BY amount DESC
        """, (user_id, stat["category"], stat["type"], mean * threshold_multiplier)).fetchall()

        for row in rows:
            tx = dict(row)
            tx["category_mean"] = round(mean, 2)
            tx["severity"] = round(tx["amount"] / mean, 2) if mean else 0.0
            flagged.append(tx)

    return flagged


def detect_anomalies(
    db: Database,
    user_id: str,
    threshold_multiplier: float = DEFAULT_THRESHOLD_MULTIPLIER,
) -> list[dict[str, Any]]:
    """Persist newly flagged transactions as anomalies and raise alerts.

    A transaction that already has an anomaly row (reviewed or not) is
    skipped, so repeated runs never duplicate rows.

    Returns:
        The anomalies created by this run.
    """
    created = []

    for tx in anomalous_transactions(db, user_id, threshold_multiplier):
        if db.has_anomaly_for_transaction(user_id, tx["id"]):
            continue

        severity = tx["severity"]
        description = (
            f"Transaction of ${tx['amount']:,.2f} for {tx['description']} is "
            f"{severity:.1f}x higher than average for {tx['category']}"
        )
        anomaly_id = db.create_anomaly(user_id, tx["id"], severity, description)

        if not db.has_alert(user_id, "anomaly", transaction_id=tx["id"]):
            db.create_alert(
                user_id,
                alert_type="anomaly",
                severity="critical" if severity > CRITICAL_SEVERITY_RATIO else "warning",
                title="Unusual Transaction Detected",
                message=(
                    f'A transaction of ${tx["amount"]:,.2f} for "{tx["description"]}" is '
                    f"significantly higher than your typical {tx['category']} {tx['type']}s."
                ),
                data={"transaction_id": tx["id"], "severity": severity},
                transaction_id=tx["id"],
            )

        logger.info("Anomaly %s: transaction %s at %.1fx mean", anomaly_id, tx["id"], severity)
        created.append({
            "id": anomaly_id,
            "transaction_id": tx["id"],
            "anomaly_type": "unusual_amount",
            "severity": severity,
            "description": description,
        })

    return created


def recurring_candidates(db: Database, user_id: str) -> list[dict[str, Any]]:
    """Group transactions by exact (description, category, type).

    Returns:
        Groups with at least 3 occurrences, most frequent first.
    """
    conn = db.connect()
    rows = conn.execute("""
        SELECT
            description, category, type,
            AVG(amount) as avg_amount,
            COUNT(*) as occurrence_count,
            MIN(date) as first_date,
            MAX(date) as last_date
        FROM transactions
        WHERE user_id = ?
        GROUP BY description, category, type
        HAVING occurrence_count >= ?
        ORDER BY occurrence_count DESC
    """, (user_id, MIN_OCCURRENCES)).fetchall()
    return [dict(row) for row in rows]


def classify_frequency(avg_gap_days: float) -> str:
    """Map an average gap between occurrences to a frequency label."""
    if avg_gap_days <= 2:
        return "daily"
    if avg_gap_days <= 9:
        return "weekly"
    if avg_gap_days <= 40:
        return "monthly"
    if avg_gap_days <= 120:
        return "quarterly"
    return "yearly"


def next_expected_date(last_date: str, frequency: str) -> str:
    """Next occurrence after ``last_date`` for a frequency label.

    Month-based steps clip to the end of shorter months (Jan 31 -> Feb 28).
    """
    last = parse_date(last_date)

    if frequency == "daily":
        nxt = last + timedelta(days=1)
    elif frequency == "weekly":
        nxt = last + timedelta(days=7)
    elif frequency == "monthly":
        nxt = add_months(last, 1)
    elif frequency == "quarterly":
        nxt = add_months(last, 3)
    elif frequency == "yearly":
        nxt = add_months(last, 12)
    else:
        raise ValueError(f"Unknown frequency: {frequency}")

    return nxt.isoformat()


def describe_candidate(candidate: dict[str, Any]) -> dict[str, Any]:
    """Attach frequency, confidence and next_expected to a candidate group."""
    first = parse_date(candidate["first_date"])
    last = parse_date(candidate["last_date"])
    count = candidate["occurrence_count"]

    avg_gap = (last - first).days / (count - 1)
    frequency = classify_frequency(avg_gap)

    return {
        "description": candidate["description"],
        "amount": round(candidate["avg_amount"], 2),
        "category": candidate["category"],
        "type": candidate["type"],
        "frequency": frequency,
        "confidence": round(min(0.95, count / 10), 2),
        "occurrence_count": count,
        "avg_gap_days": round(avg_gap, 1),
        "last_occurrence": candidate["last_date"],
        "next_expected": next_expected_date(candidate["last_date"], frequency),
    }


def detect_recurring(db: Database, user_id: str) -> dict[str, Any]:
    """Infer recurring patterns and store them.

    An existing pattern for the same (description, category) is refreshed
    in place instead of duplicated.

    Returns:
        Dictionary with created/updated counts and the detected patterns.
    """
    created = 0
    updated = 0
    recurring = []

    for candidate in recurring_candidates(db, user_id):
        item = describe_candidate(candidate)
        if db.upsert_recurring(user_id, item):
            created += 1
        else:
            updated += 1
        recurring.append(item)

    if recurring:
        logger.info(
            "Recurring detection for %s: %d created, %d refreshed", user_id, created, updated
        )

    return {"created": created, "updated": updated, "recurring": recurring}


def missed_recurring(db: Database, user_id: str, today: date | None = None) -> list[dict[str, Any]]:
    """Stored recurring items whose next occurrence is already past."""
    today = today or date.today()
    items = db.get_missed_recurring(user_id, today.isoformat())
    for item in items:
        item["days_overdue"] = (today - parse_date(item["next_expected"])).days
    return items
