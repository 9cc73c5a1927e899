"""
Tone/State Classifier

Maps streak state to a mood band. The band themes the UI and decides how hard
messages escalate, so it is recomputed after every state-changing action.
"""
from enum import Enum
from typing import Optional


class ToneBand(str, Enum):
    AMAZING = "amazing"
    GREAT = "great"
    GOOD = "good"
    WARNING = "warning"
    DANGER = "danger"
    NEUTRAL = "neutral"


# (minimum streak, band), checked top-down
STREAK_BANDS = [
    (14, ToneBand.AMAZING),
    (7, ToneBand.GREAT),
    (3, ToneBand.GOOD),
]

DANGER_AFTER_DAYS = 3
WARNING_AFTER_DAYS = 1


def classify(streak: int, days_since_last: Optional[int]) -> ToneBand:
    """
    First matching band wins; streak bands outrank days-since-last bands.

    days_since_last of None (nothing logged yet) is neutral.
    """
    for minimum, band in STREAK_BANDS:
        if streak >= minimum:
            return band

    if days_since_last is None:
        return ToneBand.NEUTRAL
    if days_since_last > DANGER_AFTER_DAYS:
        return ToneBand.DANGER
    if days_since_last > WARNING_AFTER_DAYS:
        return ToneBand.WARNING
    return ToneBand.NEUTRAL
