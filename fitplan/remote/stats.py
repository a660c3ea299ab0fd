"""Activity statistics computed from a user's sessions.

Used by the in-memory remote and by the orchestrator to refresh cached
stats after an offline session, so both sides agree on the numbers.
"""

from collections import Counter
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

DEFAULT_ACTIVITY = "marche"


def _session_date(session: Dict[str, Any]) -> Optional[date]:
    value = session.get("date")
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, (int, float)):
        return datetime.fromtimestamp(value, tz=timezone.utc).date()
    if isinstance(value, str) and value:
        try:
            return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
        except ValueError:
            return None
    return None


def calculate_streak(sessions: List[Dict[str, Any]], today: Optional[date] = None) -> int:
    """Consecutive days, counting back from today, with a completed session.

    Sessions are expected newest first.
    """
    today = today or datetime.now(timezone.utc).date()
    streak = 0
    for session in sessions:
        session_day = _session_date(session)
        if session_day is None:
            break
        days_diff = (today - session_day).days
        if days_diff == streak and session.get("completed"):
            streak += 1
        elif days_diff == streak - 1:
            # Second session on an already counted day
            continue
        else:
            break
    return streak


def favorite_activity(sessions: List[Dict[str, Any]]) -> str:
    counts = Counter(s.get("activity") for s in sessions if s.get("activity"))
    if not counts:
        return DEFAULT_ACTIVITY
    return counts.most_common(1)[0][0]


def monthly_progress(sessions: List[Dict[str, Any]], today: Optional[date] = None) -> int:
    """Percent change in completed sessions, this month vs. last month."""
    today = today or datetime.now(timezone.utc).date()
    last_month = (today.year, today.month - 1) if today.month > 1 else (today.year - 1, 12)

    this_count = 0
    last_count = 0
    for session in sessions:
        if not session.get("completed"):
            continue
        session_day = _session_date(session)
        if session_day is None:
            continue
        month = (session_day.year, session_day.month)
        if month == (today.year, today.month):
            this_count += 1
        elif month == last_month:
            last_count += 1

    if last_count == 0:
        return 100 if this_count > 0 else 0
    return round((this_count - last_count) / last_count * 100)


def compute_stats(sessions: List[Dict[str, Any]], today: Optional[date] = None) -> Dict[str, Any]:
    """Summary statistics for a user's sessions (newest first)."""
    completed = [s for s in sessions if s.get("completed")]
    total = len(completed)
    weeks = max(1, -(-total // 7))
    return {
        "total_sessions": total,
        "total_calories": sum(s.get("calories") or 0 for s in completed),
        "total_duration": sum(s.get("duration") or 0 for s in completed),
        "streak_days": calculate_streak(sessions, today),
        "weekly_average": round(total / weeks, 1),
        "favorite_activity": favorite_activity(completed),
        "monthly_progress": monthly_progress(sessions, today),
    }
