"""
A scored (peptide, spectrum) pair.

A Match holds several score types at once, each with its own rank, plus
the statistics the reporting and re-ranking layers read from it.  Only
scores that were set can be read back.
"""

import functools
import math
from enum import Enum
from typing import TYPE_CHECKING, Callable, Dict, Iterable, List, MutableSequence, Optional, Tuple

from .exceptions import UnsetScoreError
from .peptides import Peptide
from .shuffling import RandomSource, fisher_yates
from .spectrum import MassSpectrum

if TYPE_CHECKING:
    from .match_collection import MatchCollection


class ScoreType(Enum):
    """Score types a Match can carry, with the direction that counts as better."""

    SP = ('sp', True)
    XCORR = ('xcorr', True)
    LOGP_BONF_WEIBULL_XCORR = ('logp_bonf', True)
    DECOY_XCORR_QVALUE = ('decoy_xcorr_qvalue', False)
    DECOY_PVALUE_QVALUE = ('decoy_pvalue_qvalue', False)
    PERCOLATOR_SCORE = ('percolator_score', True)
    PERCOLATOR_QVALUE = ('percolator_qvalue', False)
    QRANKER_SCORE = ('qranker_score', True)
    QRANKER_QVALUE = ('qranker_qvalue', False)

    def __init__(self, label: str, higher_is_better: bool):
        self.label = label
        self.higher_is_better = higher_is_better

    @classmethod
    def from_label(cls, label: str) -> 'ScoreType':
        for score_type in cls:
            if score_type.label == label or score_type.name == label.upper():
                return score_type
        raise ValueError(f"Unknown score type: {label}")


# q-value computed from decoys for each score type that supports it
DECOY_QVALUE_TYPES = {
    ScoreType.XCORR: ScoreType.DECOY_XCORR_QVALUE,
    ScoreType.LOGP_BONF_WEIBULL_XCORR: ScoreType.DECOY_PVALUE_QVALUE,
}

MOD_SYMBOLS = '*#@^~%$&!?+'

PERCOLATOR_FEATURE_NAMES = [
    'XCorr', 'DeltCN', 'DeltLCN', 'Sp', 'lnrSp',
    'dM', 'absdM', 'Mass', 'ionFrac', 'lnSM',
    'enzN', 'enzC', 'enzInt', 'pepLen',
    'Charge1', 'Charge2', 'Charge3',
    'lnNumSP', 'lnrXCorr', 'lnNumProt',
]
NUM_PERCOLATOR_FEATURES = len(PERCOLATOR_FEATURE_NAMES)


class ModificationSymbols:
    """
    Assigns one symbol per distinct modification mass, in order of first
    registration.  Registering the configured modifications up front keeps
    symbols stable across peptides and runs.
    """

    def __init__(self, masses: Iterable[float] = (), symbols: str = MOD_SYMBOLS):
        self.available = symbols
        self.assigned: Dict[float, str] = {}
        for mass in masses:
            self.symbol_for(mass)

    @staticmethod
    def signature(mass: float) -> float:
        return round(mass, 4)

    def symbol_for(self, mass: float) -> str:
        key = self.signature(mass)
        if key not in self.assigned:
            if len(self.assigned) >= len(self.available):
                raise ValueError(f"No modification symbols left for mass {mass}")
            self.assigned[key] = self.available[len(self.assigned)]
        return self.assigned[key]


class Match:
    """One peptide-spectrum match and every score computed for it."""

    def __init__(self, peptide: Peptide, spectrum: MassSpectrum, charge: int,
                 neutral_mass: Optional[float] = None, null_peptide: Optional[bool] = None):
        self.peptide = peptide
        self.spectrum = spectrum
        self.charge = charge
        self.neutral_mass = neutral_mass if neutral_mass is not None else spectrum.neutral_mass(charge)
        self.null_peptide = peptide.is_decoy if null_peptide is None else null_peptide
        self._scores: Dict[ScoreType, float] = {}
        self._ranks: Dict[ScoreType, int] = {}
        self.delta_cn = 0.0
        self.ln_delta_cn = 0.0
        self.ln_experiment_size = 0.0
        self.b_y_ion_matched = 0
        self.b_y_ion_possible = 0
        self.best_per_peptide = False
        self.predicted_rtime: Optional[float] = None

    def __repr__(self):
        scores = ', '.join(f"{t.label}={v:.4g}" for t, v in self._scores.items())
        return f"Match({self.peptide.sequence!r}, scan={self.scan}, charge={self.charge}, {scores})"

    # scores and ranks

    def set_score(self, score_type: ScoreType, value: float):
        self._scores[score_type] = float(value)

    def get_score(self, score_type: ScoreType) -> float:
        try:
            return self._scores[score_type]
        except KeyError:
            raise UnsetScoreError('score', score_type) from None

    def has_score(self, score_type: ScoreType) -> bool:
        return score_type in self._scores

    @property
    def scored_types(self) -> List[ScoreType]:
        return list(self._scores)

    def set_rank(self, score_type: ScoreType, rank: int):
        self._ranks[score_type] = int(rank)

    def get_rank(self, score_type: ScoreType) -> int:
        try:
            return self._ranks[score_type]
        except KeyError:
            raise UnsetScoreError('rank', score_type) from None

    def has_rank(self, score_type: ScoreType) -> bool:
        return score_type in self._ranks

    def clear_rank(self, score_type: ScoreType):
        self._ranks.pop(score_type, None)

    # ion statistics

    def set_b_y_ion_info(self, matched: int, possible: int):
        self.b_y_ion_matched = matched
        self.b_y_ion_possible = possible

    @property
    def b_y_ion_fraction_matched(self) -> float:
        if self.b_y_ion_possible == 0:
            return 0.0
        return self.b_y_ion_matched / self.b_y_ion_possible

    # peptide and spectrum views

    @property
    def scan(self) -> int:
        return self.spectrum.first_scan

    @property
    def sequence(self) -> str:
        return self.peptide.sequence

    @property
    def mass_delta(self) -> float:
        """Observed neutral mass minus calculated peptide mass."""
        return self.neutral_mass - self.peptide.mass

    def sequence_sqt(self, symbols: Optional[ModificationSymbols] = None) -> str:
        """X.SEQ.X with flanking residues and modification symbols."""
        return f"{self.peptide.prev_aa}.{self.sequence_with_symbols(symbols)}.{self.peptide.next_aa}"

    def sequence_with_symbols(self, symbols: Optional[ModificationSymbols] = None) -> str:
        """
        The sequence with a symbol after each modified residue, one symbol per
        modification on that residue.

        Without a shared ModificationSymbols, symbols are assigned in order of
        first occurrence along this peptide.
        """
        symbols = symbols if symbols is not None else ModificationSymbols()
        parts = []
        for position, aa in enumerate(self.peptide.sequence):
            parts.append(aa)
            for mass in self.peptide.modifications.get(position, ()):
                parts.append(symbols.symbol_for(mass))
        return ''.join(parts)

    def sequence_with_masses(self, merge_masses: bool = True, precision: int = 2) -> str:
        """
        The sequence with modification masses in brackets after each modified
        residue, summed if merge_masses, otherwise comma separated.
        """
        parts = []
        for position, aa in enumerate(self.peptide.sequence):
            parts.append(aa)
            masses = self.peptide.modifications.get(position)
            if not masses:
                continue
            if merge_masses:
                parts.append(f"[{sum(masses):.{precision}f}]")
            else:
                parts.append('[' + ','.join(f"{m:.{precision}f}" for m in masses) + ']')
        return ''.join(parts)

    # enzymatic termini

    @property
    def is_n_term_tryptic(self) -> bool:
        prev_aa = self.peptide.prev_aa
        return prev_aa == '-' or (prev_aa in 'KR' and self.sequence[:1] != 'P')

    @property
    def is_c_term_tryptic(self) -> bool:
        next_aa = self.peptide.next_aa
        return next_aa == '-' or (self.sequence[-1:] in ('K', 'R') and next_aa != 'P')

    def num_terminal_cleavages(self) -> int:
        """Number of tryptic termini, 0, 1 or 2."""
        return int(self.is_n_term_tryptic) + int(self.is_c_term_tryptic)

    def num_internal_cleavages(self) -> int:
        """Count internal K/R not followed by P, i.e. missed cleavages."""
        sequence = self.sequence
        return sum(1 for i in range(len(sequence) - 1)
                   if sequence[i] in 'KR' and sequence[i + 1] != 'P')

    # re-ranking features

    def percolator_features(self, collection: 'MatchCollection') -> List[float]:
        """
        The fixed-order feature vector for Percolator-style re-ranking; see
        PERCOLATOR_FEATURE_NAMES.  Collection-wide values (experiment size,
        number of matches) are read from the collection at call time.

        Requires SP and XCORR scores and ranks.
        """
        xcorr = self.get_score(ScoreType.XCORR)
        sp = self.get_score(ScoreType.SP)
        sp_rank = self.get_rank(ScoreType.SP)
        xcorr_rank = self.get_rank(ScoreType.XCORR)
        mass_delta = self.mass_delta
        experiment_size = collection.experiment_size
        num_matches = len(collection)

        return [
            xcorr,
            self.delta_cn,
            self.ln_delta_cn,
            sp,
            math.log(sp_rank),
            mass_delta,
            abs(mass_delta),
            self.neutral_mass,
            self.b_y_ion_fraction_matched,
            math.log(experiment_size) if experiment_size > 0 else 0.0,
            float(self.is_n_term_tryptic),
            float(self.is_c_term_tryptic),
            float(self.num_internal_cleavages()),
            float(len(self.sequence)),
            float(self.charge == 1),
            float(self.charge == 2),
            float(self.charge == 3),
            math.log(num_matches) if num_matches > 0 else 0.0,
            math.log(xcorr_rank),
            math.log(max(self.peptide.num_proteins, 1)),
        ]


def compare_matches(match_a: Match, match_b: Match, score_type: ScoreType) -> int:
    """
    Total order on one score type.

    Returns:
        negative if match_a is better, positive if match_b is better, 0 on a tie
    """
    a = match_a.get_score(score_type)
    b = match_b.get_score(score_type)
    if a == b:
        return 0
    a_better = a > b if score_type.higher_is_better else a < b
    return -1 if a_better else 1


def compare_spectrum_matches(match_a: Match, match_b: Match, score_type: ScoreType) -> int:
    """Order by scan number first, then by score with the better match first."""
    if match_a.scan != match_b.scan:
        return -1 if match_a.scan < match_b.scan else 1
    return compare_matches(match_a, match_b, score_type)


def score_sort_key(score_type: ScoreType) -> Callable[[Match], float]:
    """Sort key placing the better match first for score_type."""
    if score_type.higher_is_better:
        return lambda match: -match.get_score(score_type)
    return lambda match: match.get_score(score_type)


def spectrum_sort_key(score_type: ScoreType) -> Callable[[Match], Tuple[int, float]]:
    """Sort key by scan number, then the better score first."""
    by_score = score_sort_key(score_type)
    return lambda match: (match.scan, by_score(match))


def comparator_key(score_type: ScoreType, by_spectrum: bool = False):
    """compare_matches wrapped for sorted(); equivalent to the sort keys above."""
    compare = compare_spectrum_matches if by_spectrum else compare_matches
    return functools.cmp_to_key(lambda a, b: compare(a, b, score_type))


def shuffle_matches(matches: MutableSequence[Match], start: int, end: int,
                    rng: RandomSource = None) -> MutableSequence[Match]:
    """Shuffle the matches in [start, end) in place; end is one past the last index."""
    return fisher_yates(matches, start, end, rng)
