"""Search parameters, YAML loading and logging setup."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Dict, List, Optional

import yaml

from .exceptions import ConfigurationError

logger = logging.getLogger(__name__)

OVERFLOW_POLICIES = ('error', 'truncate')


def setup_logging(verbose: bool = False) -> None:
    """Configure logging."""
    level = logging.DEBUG if verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S',
    )


@dataclass
class SearchConfig:
    """Parameters shared by the search loop, the collections and the writers."""

    # reporting
    top_match: int = 5
    max_matches: int = 1000
    overflow_policy: str = 'error'
    max_hits: int = 100000

    # target-decoy
    num_decoy_files: int = 1
    seed: int = 1

    # candidate selection
    charge_states: List[int] = field(default_factory=lambda: [2, 3])
    precursor_window: float = 3.0
    missed_cleavages: int = 2
    min_length: int = 6
    max_length: int = 50
    max_spectra: int = 0

    # modifications
    static_mods: Dict[str, float] = field(default_factory=lambda: {'C': 57.021464})
    variable_mods: Dict[str, float] = field(default_factory=dict)
    max_mods: int = 1
    mod_precision: int = 2

    # scoring
    bin_width: float = 1.0005079
    bin_offset: float = 0.4
    max_rank_preliminary: int = 500
    compute_pvalues: bool = False

    # output
    output_dir: str = 'crux-output'
    fileroot: Optional[str] = None
    overwrite: bool = False
    write_tab: bool = True
    write_sqt: bool = True
    write_pepxml: bool = True
    feature_file: bool = False

    # strategies
    rtime_predictor: str = 'none'
    protein_scorer: str = 'shared'

    def __post_init__(self):
        self.validate()

    def validate(self) -> None:
        """Raise ConfigurationError for values no run could use."""
        if self.overflow_policy not in OVERFLOW_POLICIES:
            raise ConfigurationError(
                f"overflow_policy must be one of {OVERFLOW_POLICIES}, got '{self.overflow_policy}'"
            )
        if self.top_match < 1:
            raise ConfigurationError(f"top_match must be at least 1, got {self.top_match}")
        if self.max_matches < 1:
            raise ConfigurationError(f"max_matches must be at least 1, got {self.max_matches}")
        if self.num_decoy_files < 0:
            raise ConfigurationError(f"num_decoy_files cannot be negative, got {self.num_decoy_files}")
        if not self.charge_states or any(c < 1 for c in self.charge_states):
            raise ConfigurationError(f"charge_states must be positive integers, got {self.charge_states}")
        if self.precursor_window <= 0:
            raise ConfigurationError(f"precursor_window must be positive, got {self.precursor_window}")

    @property
    def num_files(self) -> int:
        """Target file plus one per decoy set."""
        return self.num_decoy_files + 1

    def updated(self, **overrides) -> 'SearchConfig':
        """Return a copy with the given non-None values replaced."""
        values = {k: v for k, v in overrides.items() if v is not None}
        return replace(self, **values)


def load_config(config_path: Path | str | None) -> SearchConfig:
    """Load configuration from YAML file or return defaults."""
    if config_path is None:
        return SearchConfig()

    with open(config_path) as f:
        user_config = yaml.safe_load(f) or {}

    if not isinstance(user_config, dict):
        raise ConfigurationError(f"Config file {config_path} must contain a mapping")

    known = {f.name for f in fields(SearchConfig)}
    unknown = sorted(set(user_config) - known)
    if unknown:
        raise ConfigurationError(f"Unknown config keys in {config_path}: {', '.join(unknown)}")

    logger.debug(f"Loaded {len(user_config)} settings from {config_path}")
    return SearchConfig(**user_config)


def parse_mods(mod_string: str) -> Dict[str, float]:
    """
    Parse modifications given as AA:mass pairs separated by commas.

    Args:
        mod_string: e.g. "C:57.021464,M:15.994915", or "none"

    Returns:
        Dictionary mapping amino acid to mass delta
    """
    mods = {}
    if not mod_string or mod_string.lower() == 'none':
        return mods
    for mod_str in mod_string.split(','):
        mod_str = mod_str.strip()
        if ':' not in mod_str:
            raise ConfigurationError(
                f"Invalid modification '{mod_str}'; format should be AA:mass (e.g. C:57.021464)"
            )
        aa, mass_str = mod_str.split(':', 1)
        try:
            mods[aa.strip().upper()] = float(mass_str.strip())
        except ValueError:
            raise ConfigurationError(f"Invalid modification mass in '{mod_str}'") from None
    return mods
