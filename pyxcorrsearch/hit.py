"""
Protein-level hits assembled from a scored match collection.

Assembly is a single pass: each peptide keeps its best score, then every
peptide contributes that score to each protein containing it and a
ProteinScorer turns the contributions into one protein score.
"""

import logging
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Sequence, TextIO, Tuple

from .exceptions import CapacityExceededError, ConfigurationError
from .match import ScoreType, score_sort_key
from .match_collection import MatchCollection

logger = logging.getLogger(__name__)

MAX_NUMBER_HITS = 100000


@dataclass(frozen=True)
class Hit:
    """A protein with its aggregate score and number of supporting peptides."""

    protein_id: str
    score: float
    num_peptides: int


class ProteinScorer:
    """
    Aggregates peptide contributions into a protein score.

    Each contribution is (peptide score, number of proteins sharing the
    peptide).  Subclasses implement aggregate().
    """

    name = 'base'

    def aggregate(self, contributions: Sequence[Tuple[float, int]]) -> float:
        raise NotImplementedError


class BestPeptideProteinScorer(ProteinScorer):
    """Protein score is its best peptide score."""

    name = 'best'

    def aggregate(self, contributions: Sequence[Tuple[float, int]]) -> float:
        return max(score for score, _ in contributions)


class SharedPeptideProteinScorer(ProteinScorer):
    """Sum of peptide scores, each split evenly across the proteins sharing it."""

    name = 'shared'

    def aggregate(self, contributions: Sequence[Tuple[float, int]]) -> float:
        return sum(score / max(num_shared, 1) for score, num_shared in contributions)


PROTEIN_SCORERS = {
    BestPeptideProteinScorer.name: BestPeptideProteinScorer,
    SharedPeptideProteinScorer.name: SharedPeptideProteinScorer,
}


def create_protein_scorer(name: str) -> ProteinScorer:
    try:
        return PROTEIN_SCORERS[name]()
    except KeyError:
        raise ConfigurationError(
            f"Unknown protein scorer '{name}'; choose from {', '.join(PROTEIN_SCORERS)}"
        ) from None


class HitCollection:
    """Fixed-capacity, append-only set of hits."""

    def __init__(self, capacity: int = MAX_NUMBER_HITS):
        self.capacity = capacity
        self._hits: List[Hit] = []

    def __len__(self):
        return len(self._hits)

    def __iter__(self) -> Iterator[Hit]:
        # every call gets its own cursor
        return iter(tuple(self._hits))

    @property
    def hits(self) -> Tuple[Hit, ...]:
        return tuple(self._hits)

    def add_hit(self, hit: Hit):
        if len(self._hits) >= self.capacity:
            raise CapacityExceededError('HitCollection', self.capacity)
        self._hits.append(hit)

    @classmethod
    def from_match_collection(cls, match_collection: MatchCollection,
                              score_type: ScoreType = ScoreType.LOGP_BONF_WEIBULL_XCORR,
                              scorer: Optional[ProteinScorer] = None,
                              capacity: int = MAX_NUMBER_HITS) -> 'HitCollection':
        """
        Assemble protein hits from a scored match collection, best protein
        first.
        """
        scorer = scorer or SharedPeptideProteinScorer()
        sort_key = score_sort_key(score_type)

        # peptide -> best match
        best_by_peptide: Dict[str, object] = {}
        proteins_by_peptide: Dict[str, set] = {}
        for match in match_collection:
            peptide = match.sequence
            best = best_by_peptide.get(peptide)
            if best is None or sort_key(match) < sort_key(best):
                best_by_peptide[peptide] = match
            proteins_by_peptide.setdefault(peptide, set()).update(match.peptide.protein_ids)

        # protein -> contributions
        contributions: Dict[str, List[Tuple[float, int]]] = {}
        for peptide, match in best_by_peptide.items():
            proteins = proteins_by_peptide[peptide]
            peptide_score = match.get_score(score_type)
            for protein_id in proteins:
                contributions.setdefault(protein_id, []).append((peptide_score, len(proteins)))

        hits = [Hit(protein_id, scorer.aggregate(values), len(values))
                for protein_id, values in contributions.items()]
        direction = -1.0 if score_type.higher_is_better else 1.0
        hits.sort(key=lambda hit: (direction * hit.score, hit.protein_id))

        hit_collection = cls(capacity)
        for hit in hits:
            hit_collection.add_hit(hit)

        logger.debug(f"Assembled {len(hit_collection)} protein hits from {len(best_by_peptide)} peptides")
        return hit_collection

    def write(self, output: TextIO) -> bool:
        """Write one tab-delimited line per hit."""
        for hit in self:
            output.write(f"{hit.protein_id}\t{hit.score:.6g}\t{hit.num_peptides}\n")
        return True
