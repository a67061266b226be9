"""
The collection of matches for one spectrum and charge, or, when merged, for
many spectra.

A collection is bounded by a capacity with an overflow policy decided up
front.  It sorts by one score type at a time, assigns dense ranks, shuffles
sub-ranges, exposes the top N matches, computes delta-CN and p-values, and
provides the per-match feature vectors for re-ranking.  Decoy q-values are
computed across a target collection and its decoy collections.
"""

import logging
import math
from typing import Iterable, Iterator, List, Optional, Sequence, Set

import numpy as np

from .exceptions import CapacityExceededError, ConfigurationError, RankNotComputedError
from .match import (
    DECOY_QVALUE_TYPES,
    NUM_PERCOLATOR_FEATURES,
    Match,
    ScoreType,
    score_sort_key,
    shuffle_matches,
    spectrum_sort_key,
)
from .shuffling import RandomSource

logger = logging.getLogger(__name__)

DEFAULT_CAPACITY = 1000


class MatchCollection:
    """Bounded, rankable set of matches."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY, overflow_policy: str = 'error',
                 is_decoy: bool = False, experiment_size: int = 0,
                 matches: Optional[Iterable[Match]] = None):
        if capacity < 1:
            raise ConfigurationError(f"Match collection capacity must be at least 1, got {capacity}")
        if overflow_policy not in ('error', 'truncate'):
            raise ConfigurationError(f"Unknown overflow policy '{overflow_policy}'")
        self.capacity = capacity
        self.overflow_policy = overflow_policy
        self.is_decoy = is_decoy
        self.sorted_by: Optional[ScoreType] = None
        self.sorted_by_spectrum = False
        self.num_rejected = 0
        self._matches: List[Match] = []
        self._ranked: Set[ScoreType] = set()
        self._experiment_size = 0
        if matches is not None:
            self.extend(matches)
        self.experiment_size = experiment_size or len(self._matches)

    def __repr__(self):
        kind = 'decoy' if self.is_decoy else 'target'
        return f"MatchCollection({kind}, {len(self)} matches, sorted_by={self.sorted_by})"

    def __len__(self):
        return len(self._matches)

    def __iter__(self) -> Iterator[Match]:
        # iterate over a snapshot so the collection may be re-sorted meanwhile
        return iter(list(self._matches))

    def __getitem__(self, index):
        return self._matches[index]

    @property
    def matches(self) -> Sequence[Match]:
        return tuple(self._matches)

    @property
    def is_full(self) -> bool:
        return len(self._matches) >= self.capacity

    @property
    def experiment_size(self) -> int:
        """Number of candidates scored, which may exceed the number kept."""
        return self._experiment_size

    @experiment_size.setter
    def experiment_size(self, size: int):
        self._experiment_size = int(size)
        ln_size = math.log(size) if size > 0 else 0.0
        for match in self._matches:
            match.ln_experiment_size = ln_size

    # population

    def add_match(self, match: Match) -> bool:
        """
        Admit a match.

        Returns:
            False if the collection was full and the policy is 'truncate'

        Raises:
            CapacityExceededError: if full and the policy is 'error'
        """
        if self.is_full:
            if self.overflow_policy == 'error':
                raise CapacityExceededError('MatchCollection', self.capacity)
            if self.num_rejected == 0:
                logger.warning(f"Match collection reached its capacity of {self.capacity}; "
                               f"further matches are dropped")
            self.num_rejected += 1
            return False

        match.ln_experiment_size = math.log(self._experiment_size) if self._experiment_size > 0 else 0.0
        self._matches.append(match)
        self._invalidate_order()
        return True

    def extend(self, matches: Iterable[Match]) -> int:
        """Add matches in order; returns how many were admitted."""
        return sum(1 for match in matches if self.add_match(match))

    def _invalidate_order(self):
        self.sorted_by = None
        self.sorted_by_spectrum = False
        self._ranked.clear()

    # sorting and ranking

    def sort(self, score_type: ScoreType):
        """Sort so the best match for score_type comes first; ties keep their order."""
        self._matches.sort(key=score_sort_key(score_type))
        self.sorted_by = score_type
        self.sorted_by_spectrum = False

    def spectrum_sort(self, score_type: ScoreType):
        """Sort by scan number, then best score first within a scan."""
        self._matches.sort(key=spectrum_sort_key(score_type))
        self.sorted_by = score_type
        self.sorted_by_spectrum = True

    def populate_ranks(self, score_type: ScoreType):
        """Sort by score_type and assign ranks 1..N in sorted order."""
        self.sort(score_type)
        for rank, match in enumerate(self._matches, start=1):
            match.set_rank(score_type, rank)
        self._ranked.add(score_type)

    def is_ranked(self, score_type: ScoreType) -> bool:
        return score_type in self._ranked

    def _require_ranked(self, score_type: ScoreType):
        if self._matches and score_type not in self._ranked:
            raise RankNotComputedError(score_type)

    def ranks(self, score_type: ScoreType) -> List[int]:
        """Ranks of score_type in the current order of the collection."""
        self._require_ranked(score_type)
        return [match.get_rank(score_type) for match in self._matches]

    def match_at_rank(self, score_type: ScoreType, rank: int) -> Match:
        self._require_ranked(score_type)
        for match in self._matches:
            if match.get_rank(score_type) == rank:
                return match
        raise IndexError(f"No match with {score_type.name} rank {rank}")

    def top_matches(self, score_type: ScoreType, limit: Optional[int] = None) -> List[Match]:
        """
        The matches ranked 1..limit for score_type, best first.  Matches past
        the cutoff stay in the collection.
        """
        self._require_ranked(score_type)
        ranked = sorted(self._matches, key=lambda match: match.get_rank(score_type))
        if limit is None:
            return ranked
        return ranked[:max(limit, 0)]

    def iter_top(self, score_type: ScoreType, limit: Optional[int] = None) -> Iterator[Match]:
        return iter(self.top_matches(score_type, limit))

    def truncate(self, limit: int, score_type: ScoreType):
        """Rank by score_type and discard every match ranked below limit."""
        self.populate_ranks(score_type)
        if len(self._matches) > limit:
            logger.debug(f"Truncating {len(self._matches)} matches to {limit} by {score_type.name}")
            del self._matches[limit:]

    # shuffling

    def shuffle(self, start: int = 0, end: Optional[int] = None, rng: RandomSource = None):
        """Randomly permute the matches in [start, end) in place."""
        end = len(self._matches) if end is None else end
        shuffle_matches(self._matches, start, end, rng)
        self.sorted_by = None
        self.sorted_by_spectrum = False

    # derived statistics

    def compute_delta_cn(self, score_type: ScoreType = ScoreType.XCORR):
        """
        Set delta-CN for every match: the gap to the next best match divided
        by this match's score, 0 for the last match or a non-positive score.
        """
        self.populate_ranks(score_type)
        scores = [match.get_score(score_type) for match in self._matches]
        for i, match in enumerate(self._matches):
            if i + 1 < len(scores) and scores[i] > 0:
                delta_cn = abs(scores[i] - scores[i + 1]) / scores[i]
            else:
                delta_cn = 0.0
            match.delta_cn = delta_cn
            match.ln_delta_cn = math.log(delta_cn) if delta_cn > 0 else 0.0

    def compute_pvalues(self, scorer):
        """Set LOGP_BONF_WEIBULL_XCORR from the collection's XCorr distribution."""
        xcorrs = [match.get_score(ScoreType.XCORR) for match in self._matches]
        for match, log_pvalue in zip(self._matches, scorer.log_bonferroni_pvalues(xcorrs)):
            match.set_score(ScoreType.LOGP_BONF_WEIBULL_XCORR, log_pvalue)

    def mark_best_per_peptide(self, score_type: ScoreType):
        """Flag the best match of every distinct (modified) peptide."""
        sort_key = score_sort_key(score_type)
        best = {}
        for match in self._matches:
            match.best_per_peptide = False
            key = (match.sequence, match.peptide.modification_key)
            if key not in best or sort_key(match) < sort_key(best[key]):
                best[key] = match
        for match in best.values():
            match.best_per_peptide = True

    def scored_types(self) -> List[ScoreType]:
        """Score types set on every match of the collection."""
        if not self._matches:
            return []
        return [t for t in ScoreType if all(match.has_score(t) for match in self._matches)]

    # re-ranking features

    def percolator_features(self, match: Match) -> List[float]:
        return match.percolator_features(self)

    def feature_matrix(self) -> np.ndarray:
        """Feature vectors of all matches in the current order, one row each."""
        if not self._matches:
            return np.zeros((0, NUM_PERCOLATOR_FEATURES))
        return np.array([self.percolator_features(match) for match in self._matches])

    # multi-spectrum mode

    @classmethod
    def merge(cls, collections: Iterable['MatchCollection'], score_type: ScoreType,
              top_n: int = 1, capacity: Optional[int] = None, is_decoy: Optional[bool] = None,
              overflow_policy: str = 'error') -> 'MatchCollection':
        """
        Collect the top_n matches by score_type of each collection into a new
        collection spanning many spectra.
        """
        collections = list(collections)
        selected = []
        for collection in collections:
            if not collection.is_ranked(score_type):
                collection.populate_ranks(score_type)
            selected.extend(collection.top_matches(score_type, top_n))

        if is_decoy is None:
            is_decoy = bool(collections) and all(c.is_decoy for c in collections)
        merged = cls(capacity=capacity or max(len(selected), 1), overflow_policy=overflow_policy,
                     is_decoy=is_decoy)
        merged.extend(selected)
        merged.experiment_size = sum(c.experiment_size for c in collections)
        return merged


def compute_decoy_qvalues(target: MatchCollection, decoys: Sequence[MatchCollection],
                          score_type: ScoreType = ScoreType.XCORR,
                          expected_decoys: Optional[int] = None) -> np.ndarray:
    """
    Decoy-based q-values for the target matches.

    For the target at rank r with score s, FDR(r) is the number of decoys
    scoring at least s (averaged over the decoy collections) divided by the
    number of targets scoring at least s, clipped to [0, 1].  The q-value is
    the minimum FDR over ranks r and worse.  Results are stored on the target
    matches under the decoy q-value type of score_type.

    Returns:
        q-values of the target matches, best rank first
    """
    if expected_decoys is not None and len(decoys) != expected_decoys:
        raise ConfigurationError(
            f"q-value computation was given {len(decoys)} decoy collections but was expecting {expected_decoys}."
        )
    if not decoys:
        raise ConfigurationError("q-value computation needs at least one decoy collection")
    try:
        qvalue_type = DECOY_QVALUE_TYPES[score_type]
    except KeyError:
        raise ConfigurationError(f"No decoy q-value is defined for {score_type.name}") from None

    if len(target) == 0:
        return np.zeros(0)

    target.populate_ranks(score_type)

    # orient scores so that larger is better
    sign = 1.0 if score_type.higher_is_better else -1.0
    target_scores = sign * np.array([match.get_score(score_type) for match in target])
    decoy_scores = sign * np.array([match.get_score(score_type) for decoy in decoys for match in decoy])

    sorted_targets = np.sort(target_scores)
    sorted_decoys = np.sort(decoy_scores)
    targets_at_or_above = len(sorted_targets) - np.searchsorted(sorted_targets, target_scores, side='left')
    decoys_at_or_above = len(sorted_decoys) - np.searchsorted(sorted_decoys, target_scores, side='left')

    fdr = (decoys_at_or_above / len(decoys)) / targets_at_or_above
    fdr = np.clip(fdr, 0.0, 1.0)
    qvalues = np.minimum.accumulate(fdr[::-1])[::-1]

    for match, qvalue in zip(target, qvalues):
        match.set_score(qvalue_type, float(qvalue))

    logger.debug(f"Computed {qvalue_type.name} for {len(target)} target matches "
                 f"against {len(decoy_scores)} decoys")
    return qvalues
