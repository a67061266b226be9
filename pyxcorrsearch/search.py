"""
The search loop: score every (spectrum, charge) against its candidate
peptides and their decoys, report the matches, then estimate q-values, write
the best match of every spectrum and charge with its q-values and assemble
protein hits across the run.
"""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

import numpy as np

from .config import SearchConfig
from .hit import HitCollection, ProteinScorer, create_protein_scorer
from .match import Match, ScoreType
from .match_collection import MatchCollection, compute_decoy_qvalues
from .output import OutputFiles
from .peptides import MassTable, Peptide, PeptideIndex, build_peptide_index, make_decoy_peptide
from .retention import RetentionPredictor, create_retention_predictor
from .scoring import ProcessedSpectrum, XCorrScorer
from .shuffling import make_rng
from .spectrum import MassSpectrum, iter_spectrum_charges, read_spectra

logger = logging.getLogger(__name__)


@dataclass
class SearchResult:
    """Run-level results: best match per spectrum and charge, q-values and protein hits."""

    targets: MatchCollection
    decoys: List[MatchCollection]
    hits: HitCollection
    qvalues: np.ndarray = field(default_factory=lambda: np.zeros(0))
    num_spectra: int = 0
    num_searched: int = 0


def report_interval(num_spectra: int) -> int:
    """Adaptive progress reporting: more frequent for smaller datasets."""
    if num_spectra <= 100:
        return 10
    elif num_spectra <= 1000:
        return 50
    return 100


class SearchEngine:
    """Scores spectra against an indexed peptide database."""

    def __init__(self, config: SearchConfig, peptide_index: PeptideIndex,
                 scorer: Optional[XCorrScorer] = None,
                 retention_predictor: Optional[RetentionPredictor] = None,
                 protein_scorer: Optional[ProteinScorer] = None):
        self.config = config
        self.peptide_index = peptide_index
        self.scorer = scorer or XCorrScorer(MassTable(config.static_mods),
                                            bin_width=config.bin_width, bin_offset=config.bin_offset)
        self.retention_predictor = retention_predictor or create_retention_predictor(config.rtime_predictor)
        self.protein_scorer = protein_scorer or create_protein_scorer(config.protein_scorer)

    def score_candidates(self, spectrum: MassSpectrum, charge: int, peptides: Sequence[Peptide],
                         processed: ProcessedSpectrum, is_decoy: bool = False) -> MatchCollection:
        """
        Score peptides against one spectrum at one charge.

        Every candidate gets an Sp score; the best max_rank_preliminary by Sp
        (at most max_matches) are kept and scored with XCorr, ranked and
        given delta-CN (and p-values when configured).
        """
        config = self.config
        preliminary = []
        for peptide in peptides:
            match = Match(peptide, spectrum, charge)
            sp, matched, possible = self.scorer.score_sp(peptide, processed)
            match.set_score(ScoreType.SP, sp)
            match.set_b_y_ion_info(matched, possible)
            preliminary.append(match)
        preliminary.sort(key=lambda m: -m.get_score(ScoreType.SP))

        collection = MatchCollection(capacity=config.max_matches, overflow_policy=config.overflow_policy,
                                     is_decoy=is_decoy, experiment_size=len(peptides))
        collection.extend(preliminary[:min(config.max_rank_preliminary, config.max_matches)])
        collection.populate_ranks(ScoreType.SP)

        for match in collection:
            match.set_score(ScoreType.XCORR, self.scorer.score_xcorr(match.peptide, processed))
            match.predicted_rtime = self.retention_predictor.predict(match)
        collection.compute_delta_cn(ScoreType.XCORR)

        if config.compute_pvalues:
            collection.compute_pvalues(self.scorer)
            collection.populate_ranks(ScoreType.LOGP_BONF_WEIBULL_XCORR)
            collection.populate_ranks(ScoreType.XCORR)

        collection.mark_best_per_peptide(ScoreType.XCORR)
        return collection

    def make_decoys(self, spectrum: MassSpectrum, charge: int, targets: Sequence[Peptide],
                    decoy_index: int) -> List[Peptide]:
        """Shuffled decoys, reproducible for a given seed, scan, charge and decoy set."""
        rng = make_rng(self.config.seed, spectrum.first_scan, charge, decoy_index)
        return [make_decoy_peptide(peptide, rng, self.peptide_index.sequences) for peptide in targets]

    def search_spectrum(self, spectrum: MassSpectrum, charge: int):
        """
        Target and decoy collections for one spectrum at one charge, or None
        when no peptide lies in the precursor window.
        """
        neutral_mass = spectrum.neutral_mass(charge)
        candidates = self.peptide_index.candidates(neutral_mass, self.config.precursor_window)
        if not candidates:
            return None

        processed = self.scorer.prepare(spectrum, charge)
        target = self.score_candidates(spectrum, charge, candidates, processed)
        decoys = [
            self.score_candidates(spectrum, charge, self.make_decoys(spectrum, charge, candidates, i),
                                  processed, is_decoy=True)
            for i in range(self.config.num_decoy_files)
        ]

        top = target.top_matches(ScoreType.XCORR, self.config.top_match)
        logger.debug(f"Scan {spectrum.first_scan} charge {charge}: {len(candidates)} candidates, "
                     f"predicted rtime spread {self.retention_predictor.calc_max_diff(top):.2f}")
        return target, decoys

    def run(self, spectra: Sequence[MassSpectrum], output: Optional[OutputFiles] = None,
            num_proteins: int = 0) -> SearchResult:
        config = self.config
        score_type = ScoreType.LOGP_BONF_WEIBULL_XCORR if config.compute_pvalues else ScoreType.XCORR

        if output:
            output.write_headers(num_proteins)
            output.write_feature_header()

        target_collections = []
        decoy_collections: List[List[MatchCollection]] = [[] for _ in range(config.num_decoy_files)]
        interval = report_interval(len(spectra))
        last_reported = -1
        num_searched = 0

        spectrum_index = {id(spectrum): i for i, spectrum in enumerate(spectra)}
        for spectrum, charge in iter_spectrum_charges(spectra, config.charge_states):
            i = spectrum_index[id(spectrum)]
            if i % interval == 0 and i != last_reported:
                last_reported = i
                logger.info(f"Processing spectrum {i + 1}/{len(spectra)} - Precursor: "
                            f"{spectrum.precursor_mz:.4f} m/z - {num_searched} spectrum charges searched")

            searched = self.search_spectrum(spectrum, charge)
            if searched is None:
                continue
            target, decoys = searched
            num_searched += 1

            if output:
                output.write_matches(target, decoys, ScoreType.XCORR, spectrum)
                for collection in (target, *decoys):
                    for match in collection.top_matches(ScoreType.XCORR, 1):
                        output.write_match_features(match, collection.percolator_features(match))

            target.truncate(config.top_match, score_type)
            target_collections.append(target)
            for decoy_idx, decoy in enumerate(decoys):
                decoy.truncate(config.top_match, score_type)
                decoy_collections[decoy_idx].append(decoy)

        merged_targets = MatchCollection.merge(target_collections, score_type, top_n=1,
                                               overflow_policy=config.overflow_policy)
        merged_decoys = [MatchCollection.merge(collections, score_type, top_n=1, is_decoy=True,
                                               overflow_policy=config.overflow_policy)
                         for collections in decoy_collections]

        qvalues = np.zeros(0)
        if merged_decoys and len(merged_targets):
            qvalues = compute_decoy_qvalues(merged_targets, merged_decoys, ScoreType.XCORR,
                                            expected_decoys=config.num_decoy_files)
            if config.compute_pvalues:
                qvalues = compute_decoy_qvalues(merged_targets, merged_decoys, score_type,
                                                expected_decoys=config.num_decoy_files)

        if output:
            with output.for_command('qvalues', write_sqt=False, feature_file=False) as run_output:
                run_output.write_headers(num_proteins)
                run_output.write_matches(merged_targets, merged_decoys, score_type)

        hits = HitCollection.from_match_collection(merged_targets, score_type, self.protein_scorer,
                                                   capacity=config.max_hits)
        if output:
            output.write_ranked_proteins({hit.protein_id: hit.score for hit in hits})
            output.write_ranked_peptides(best_peptide_scores(merged_targets, score_type))

        result = SearchResult(merged_targets, merged_decoys, hits, qvalues, len(spectra), num_searched)
        log_summary(result, score_type)
        return result


def best_peptide_scores(collection: MatchCollection, score_type: ScoreType) -> Dict[str, float]:
    """Best score of each peptide sequence in the collection."""
    collection.mark_best_per_peptide(score_type)
    return {match.sequence: match.get_score(score_type) for match in collection if match.best_per_peptide}


def log_summary(result: SearchResult, score_type: ScoreType):
    logger.info("Search completed!")
    logger.info(f"Total spectra processed: {result.num_spectra}")
    logger.info(f"Spectrum charges with candidates: {result.num_searched}")
    logger.info(f"Top target matches: {len(result.targets)} ranked by {score_type.name}")
    if len(result.qvalues):
        logger.info(f"  Target matches at 1% FDR: {int(np.sum(result.qvalues <= 0.01))}")
    logger.info(f"Protein hits: {len(result.hits)}")


def run_search(fasta_file: str, spectrum_file: str, config: SearchConfig) -> SearchResult:
    """Index the database, read the spectra and search them, writing every result file."""
    mass_table = MassTable(config.static_mods)
    peptide_index = build_peptide_index(fasta_file, mass_table, config.missed_cleavages,
                                        config.min_length, config.max_length,
                                        config.variable_mods, config.max_mods)
    num_proteins = len({pid for peptide in peptide_index.peptides for pid in peptide.protein_ids})

    spectra = read_spectra(spectrum_file, config.max_spectra)
    logger.info(f"Processing {len(spectra)} MS2 spectra with {config.num_decoy_files} decoy set(s)")

    engine = SearchEngine(config, peptide_index)
    with OutputFiles(config, 'search', spectrum_file=spectrum_file, database=fasta_file) as output:
        result = engine.run(spectra, output, num_proteins)
    logger.info(f"Results written to {config.output_dir}")
    return result
