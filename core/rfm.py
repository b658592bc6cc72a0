"""
RFM (recency / frequency / monetary) scoring.

Each dimension is scored 1-5 against fixed thresholds; the three scores
pick a segment and are concatenated into ``rfm_score`` (e.g. 545).
"""
from typing import Tuple

CHAMPIONS = "Champions"
LOYAL = "Loyal"
PROMISING = "Promising"
AT_RISK = "At Risk"

SEGMENTS = (CHAMPIONS, LOYAL, PROMISING, AT_RISK)

# (upper bound in days, score); anything older scores 1
RECENCY_THRESHOLDS = ((7, 5), (30, 4), (90, 3), (180, 2))
# (lower bound, score); anything less scores 1
FREQUENCY_THRESHOLDS = ((10, 5), (5, 4), (3, 3), (2, 2))
MONETARY_THRESHOLDS = ((1000, 5), (500, 4), (200, 3), (100, 2))


def recency_score(days: float) -> int:
    for limit, score in RECENCY_THRESHOLDS:
        if days <= limit:
            return score
    return 1


def frequency_score(orders: int) -> int:
    for limit, score in FREQUENCY_THRESHOLDS:
        if orders >= limit:
            return score
    return 1


def monetary_score(total: float) -> int:
    for limit, score in MONETARY_THRESHOLDS:
        if total >= limit:
            return score
    return 1


def segment_for(r: int, f: int, m: int) -> str:
    if r >= 4 and f >= 4 and m >= 4:
        return CHAMPIONS
    if r >= 3 and f >= 3:
        return LOYAL
    if r >= 3 and f <= 2:
        return PROMISING
    return AT_RISK


def score(recency_days: float, frequency: int, monetary: float) -> Tuple[int, int, int, int, str]:
    """Return (r, f, m, rfm_score, segment)."""
    r = recency_score(recency_days)
    f = frequency_score(frequency)
    m = monetary_score(monetary)
    return r, f, m, r * 100 + f * 10 + m, segment_for(r, f, m)
