"""
pyXcorrSearch: Comet-style fast XCorr database search

Scores MS/MS spectra against tryptic peptides and their shuffled decoys,
ranks peptide-spectrum matches by several score types, estimates decoy
q-values and assembles protein hits.
"""

__version__ = "0.1.0"

from .exceptions import (
    SearchError,
    UnsetScoreError,
    RankNotComputedError,
    ConfigurationError,
    CapacityExceededError,
)
from .config import SearchConfig, load_config, setup_logging
from .match import Match, ScoreType, PERCOLATOR_FEATURE_NAMES, compare_matches, shuffle_matches
from .match_collection import MatchCollection, compute_decoy_qvalues
from .hit import Hit, HitCollection, create_protein_scorer
from .retention import RetentionPredictor, create_retention_predictor
from .output import OutputFiles
from .search import SearchEngine, SearchResult, run_search

__all__ = [
    "__version__",
    "SearchError",
    "UnsetScoreError",
    "RankNotComputedError",
    "ConfigurationError",
    "CapacityExceededError",
    "SearchConfig",
    "load_config",
    "setup_logging",
    "Match",
    "ScoreType",
    "PERCOLATOR_FEATURE_NAMES",
    "compare_matches",
    "shuffle_matches",
    "MatchCollection",
    "compute_decoy_qvalues",
    "Hit",
    "HitCollection",
    "create_protein_scorer",
    "RetentionPredictor",
    "create_retention_predictor",
    "OutputFiles",
    "SearchEngine",
    "SearchResult",
    "run_search",
]
