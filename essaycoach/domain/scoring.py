from __future__ import annotations

from collections.abc import Sequence
import math

from essaycoach.domain.errors import DomainValidationError


def overall_band_score(scores: Sequence[float]) -> float:
    """Average the sub-scores and snap the result onto the half-band grid.

    Fractional part >= .75 rounds up to the next whole band, .25 < f < .75
    lands on the half band, and f <= .25 rounds down.
    """
    if not scores:
        raise DomainValidationError("at least one sub-score is required")
    average = sum(float(score) for score in scores) / len(scores)
    whole = math.floor(average)
    fraction = round(average - whole, 6)
    if fraction >= 0.75:
        return float(whole + 1)
    if fraction > 0.25:
        return whole + 0.5
    return float(whole)
