"""
Retention-time predictors.

A predictor is created once from the run configuration and handed to the
search loop.  Predicted times are relative units, used only to compare the
matches of one spectrum with each other.
"""

import logging
from typing import Dict, Sequence

from .match import Match

logger = logging.getLogger(__name__)

# Reversed-phase retention coefficients per residue (SSRCalc-style, relative units)
HYDROPHOBICITY_COEFFICIENTS = {
    'W': 11.0, 'F': 10.5, 'L': 9.6, 'I': 8.4, 'M': 5.8,
    'V': 5.0, 'Y': 4.0, 'C': -0.8, 'P': 0.2, 'A': 0.8,
    'E': 0.0, 'T': -0.2, 'D': -0.5, 'Q': -0.9, 'S': -0.5,
    'G': -0.9, 'R': -1.3, 'N': -1.2, 'H': -1.3, 'K': -1.9,
}


class RetentionPredictor:
    """Base predictor; every peptide elutes at 0."""

    name = 'none'

    def predict(self, match: Match) -> float:
        return 0.0

    def calc_max_diff(self, matches: Sequence[Match]) -> float:
        """
        Signed difference of predicted times with the largest magnitude over
        all ordered pairs (later minus earlier in the given order).  0 for
        fewer than two matches.
        """
        if len(matches) <= 1:
            return 0.0

        rtimes = [self.predict(match) for match in matches]
        max_diff = 0.0
        for i in range(len(rtimes) - 1):
            for j in range(i + 1, len(rtimes)):
                diff = rtimes[j] - rtimes[i]
                if abs(diff) > abs(max_diff):
                    max_diff = diff
        return max_diff


class NullRetentionPredictor(RetentionPredictor):
    name = 'none'


class HydrophobicityRetentionPredictor(RetentionPredictor):
    """Sum of per-residue hydrophobicity coefficients."""

    name = 'hydrophobicity'

    def __init__(self, coefficients: Dict[str, float] = None):
        self.coefficients = dict(coefficients or HYDROPHOBICITY_COEFFICIENTS)

    def predict(self, match: Match) -> float:
        return sum(self.coefficients.get(aa, 0.0) for aa in match.sequence)


RETENTION_PREDICTORS = {
    NullRetentionPredictor.name: NullRetentionPredictor,
    HydrophobicityRetentionPredictor.name: HydrophobicityRetentionPredictor,
}


def create_retention_predictor(name: str) -> RetentionPredictor:
    """Build the named predictor; unknown names fall back to the null predictor."""
    predictor_class = RETENTION_PREDICTORS.get((name or 'none').lower())
    if predictor_class is None:
        logger.warning(f"Invalid retention time predictor '{name}': using the null predictor")
        predictor_class = NullRetentionPredictor
    logger.debug(f"Created {predictor_class.name} retention predictor")
    return predictor_class()
