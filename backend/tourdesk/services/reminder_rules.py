"""
Reminder rule selection.

Pure functions; the payment reminder job feeds them the local wall clock,
the whole days left before the payment deadline and the reservation's
ratchet value.
"""

import logging
from datetime import datetime, timedelta
from typing import Iterable, Optional

logger = logging.getLogger(__name__)

MINUTES_PER_DAY = 24 * 60
DEFAULT_WINDOW_MINUTES = 60


def days_until(now: datetime, target: datetime) -> int:
    """Whole days from now to target, floored (negative once target has passed)."""
    return (target - now) // timedelta(days=1)


def parse_send_time(value: str) -> int:
    """'HH:MM' -> minutes after midnight."""
    try:
        hour_str, minute_str = value.strip().split(":")
        hour, minute = int(hour_str), int(minute_str)
    except (AttributeError, ValueError):
        raise ValueError(f"Invalid send time '{value}', expected HH:MM")
    if not (0 <= hour < 24 and 0 <= minute < 60):
        raise ValueError(f"Invalid send time '{value}', expected HH:MM")
    return hour * 60 + minute


def minutes_apart(a: int, b: int) -> int:
    """Distance between two times of day, wrapping around midnight."""
    delta = abs(a - b) % MINUTES_PER_DAY
    return min(delta, MINUTES_PER_DAY - delta)


def sort_enabled_rules(rules: Iterable) -> list:
    """Enabled rules only, furthest-from-deadline first."""
    return sorted(
        (rule for rule in rules if rule.enabled),
        key=lambda rule: rule.days_before_deadline,
        reverse=True,
    )


def select_reminder_rule(
    now_local: datetime,
    days_until_due: int,
    last_reminder_sent: Optional[int],
    rules: Iterable,
    window_minutes: int = DEFAULT_WINDOW_MINUTES,
):
    """
    Return the rule to fire now, or None.

    A rule qualifies when the deadline is within its threshold, a reminder at
    that threshold (or a closer one) has not been sent yet, and the current
    time of day is within window_minutes of its send time. Rules are checked
    furthest threshold first.
    """
    current_minutes = now_local.hour * 60 + now_local.minute

    for rule in sort_enabled_rules(rules):
        if days_until_due > rule.days_before_deadline:
            continue
        if last_reminder_sent is not None and rule.days_before_deadline >= last_reminder_sent:
            continue
        try:
            rule_minutes = parse_send_time(rule.send_time)
        except ValueError as e:
            logger.warning(f"Skipping reminder rule {getattr(rule, 'id', '?')}: {e}")
            continue
        if minutes_apart(current_minutes, rule_minutes) > window_minutes:
            continue
        return rule

    return None
