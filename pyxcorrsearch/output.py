"""
Result files for one run: tab-delimited, SQT, pepXML and feature files.

OutputFiles opens one file per format for the targets and one per decoy set,
named <output_dir>/[<fileroot>.]<command>.<target|decoy|decoy-N>.<ext>, and
dispatches each collection to the file of its position.  A file that cannot
be created is reported once and every later write to it is skipped.
"""

import logging
import os
from datetime import datetime
from typing import Dict, List, Mapping, Optional, Sequence, TextIO, Tuple
from xml.sax.saxutils import quoteattr

import numpy as np
import pandas as pd

from . import __version__
from .config import SearchConfig
from .exceptions import ConfigurationError
from .match import PERCOLATOR_FEATURE_NAMES, Match, ModificationSymbols, ScoreType
from .match_collection import MatchCollection
from .scoring import STOP_AFTER_STAGES
from .spectrum import PROTON_MASS, MassSpectrum, iter_spectrum_charges

logger = logging.getLogger(__name__)

SCORE_COLUMNS = {
    ScoreType.SP: 'sp score',
    ScoreType.XCORR: 'xcorr score',
    ScoreType.LOGP_BONF_WEIBULL_XCORR: '-log10 p-value',
    ScoreType.DECOY_XCORR_QVALUE: 'decoy q-value (xcorr)',
    ScoreType.DECOY_PVALUE_QVALUE: 'decoy q-value (p-value)',
    ScoreType.PERCOLATOR_SCORE: 'percolator score',
    ScoreType.PERCOLATOR_QVALUE: 'percolator q-value',
    ScoreType.QRANKER_SCORE: 'q-ranker score',
    ScoreType.QRANKER_QVALUE: 'q-ranker q-value',
}
RANK_COLUMNS = {
    ScoreType.SP: 'sp rank',
    ScoreType.XCORR: 'xcorr rank',
    ScoreType.PERCOLATOR_SCORE: 'percolator rank',
    ScoreType.QRANKER_SCORE: 'q-ranker rank',
}

TAB_COLUMNS = [
    'scan', 'charge', 'spectrum precursor m/z', 'spectrum neutral mass', 'peptide mass',
    'delta_cn',
    'sp score', 'sp rank', 'xcorr score', 'xcorr rank', '-log10 p-value',
    'decoy q-value (xcorr)', 'decoy q-value (p-value)',
    'percolator score', 'percolator rank', 'percolator q-value',
    'q-ranker score', 'q-ranker rank', 'q-ranker q-value',
    'b/y ions matched', 'b/y ions total', 'matches/spectrum', 'predicted rtime',
    'sequence', 'modified sequence', 'tryptic termini', 'protein id', 'flanking aa',
]
DECOY_TAB_COLUMNS = TAB_COLUMNS + ['unshuffled sequence']
INTEGER_COLUMNS = ['scan', 'charge', 'sp rank', 'xcorr rank', 'percolator rank', 'q-ranker rank',
                   'b/y ions matched', 'b/y ions total', 'matches/spectrum', 'tryptic termini']


def make_target_decoy_list(num_files: int) -> List[str]:
    """'target', then 'decoy' for a single decoy set or 'decoy-1'..'decoy-N'."""
    names = ['target']
    if num_files == 2:
        names.append('decoy')
    else:
        names.extend(f"decoy-{i}" for i in range(1, num_files))
    return names


def make_file_name(fileroot: Optional[str], command: str, target_decoy: Optional[str],
                   extension: str, directory: Optional[str] = None) -> str:
    name = ''
    if fileroot:
        name += f"{fileroot}."
    name += f"{command}."
    if target_decoy:
        name += f"{target_decoy}."
    name += extension
    return os.path.join(directory, name) if directory else name


def create_file(path: str, overwrite: bool = False) -> Optional[TextIO]:
    """
    Open path for writing.

    Returns:
        The open handle, or None (after a warning) if the file exists and
        overwrite is off, or it cannot be created
    """
    if os.path.exists(path) and not overwrite:
        logger.warning(f"The file '{path}' already exists and cannot be overwritten. "
                       f"Use overwrite to replace it.")
        return None
    try:
        return open(path, 'w')
    except OSError as e:
        logger.warning(f"Unable to create file '{path}': {e}")
        return None


class TabWriter:
    """Tab-delimited match rows written through pandas."""

    def __init__(self, handle: TextIO, is_decoy: bool = False, mod_precision: int = 2):
        self.handle = handle
        self.columns = DECOY_TAB_COLUMNS if is_decoy else TAB_COLUMNS
        self.mod_precision = mod_precision

    def write_header(self):
        self.handle.write('\t'.join(self.columns) + '\n')

    def match_row(self, match: Match, num_matches: Optional[int]) -> Dict[str, object]:
        peptide = match.peptide
        row = {
            'scan': match.scan,
            'charge': match.charge,
            'spectrum precursor m/z': match.spectrum.precursor_mz,
            'spectrum neutral mass': match.neutral_mass,
            'peptide mass': peptide.mass,
            'delta_cn': match.delta_cn,
            'b/y ions matched': match.b_y_ion_matched if match.b_y_ion_possible else None,
            'b/y ions total': match.b_y_ion_possible if match.b_y_ion_possible else None,
            'matches/spectrum': num_matches,
            'predicted rtime': match.predicted_rtime,
            'sequence': peptide.sequence,
            'modified sequence': match.sequence_with_masses(precision=self.mod_precision),
            'tryptic termini': match.num_terminal_cleavages(),
            'protein id': peptide.protein_id,
            'flanking aa': f"{peptide.prev_aa}{peptide.next_aa}",
            'unshuffled sequence': peptide.unshuffled_sequence,
        }
        for score_type, column in SCORE_COLUMNS.items():
            row[column] = match.get_score(score_type) if match.has_score(score_type) else None
        for score_type, column in RANK_COLUMNS.items():
            row[column] = match.get_rank(score_type) if match.has_rank(score_type) else None
        return row

    def write_rows(self, rows: List[Dict[str, object]]):
        if not rows:
            return
        frame = pd.DataFrame(rows, columns=self.columns)
        frame = frame.astype({column: 'Int64' for column in INTEGER_COLUMNS})
        frame.to_csv(self.handle, sep='\t', index=False, header=False,
                     float_format='%.4f', na_rep='')

    def write_matches(self, matches: Sequence[Match], num_matches: Optional[int] = None):
        self.write_rows([self.match_row(match, num_matches) for match in matches])


class SQTWriter:
    """SQT format: H header lines, then S/M/L lines per spectrum and charge."""

    def __init__(self, handle: TextIO, symbols: ModificationSymbols):
        self.handle = handle
        self.symbols = symbols

    def write_header(self, tag: str, config: SearchConfig, num_proteins: int = 0,
                     database: Optional[str] = None):
        timestamp = datetime.now().strftime("%Y-%m-%dT%H:%M:%S")
        lines = [
            'H\tSQTGenerator\tpyXcorrSearch',
            f'H\tSQTGeneratorVersion\t{__version__}',
            'H\tComment\tpyXcorrSearch fast XCorr search',
            f'H\tComment\tmatches to {tag} peptides',
            f'H\tStartTime\t{timestamp}',
        ]
        if database:
            lines.append(f'H\tDatabase\t{database}')
        lines.append(f'H\tDBLocusCount\t{num_proteins}')
        lines.append('H\tPrecursorMasses\tMONO')
        lines.append('H\tFragmentMasses\tMONO')
        for aa, delta in sorted(config.static_mods.items()):
            lines.append(f'H\tStaticMod\t{aa}=+{delta:.4f}')
        for aa, delta in sorted(config.variable_mods.items()):
            lines.append(f'H\tDynamicMod\t{aa}{self.symbols.symbol_for(delta)}=+{delta:.4f}')
        lines.append('H\tEnzymeSpec\ttrypsin')
        lines.append('H\tLine fields: S, scan number, scan number, charge, 0, server, '
                     'experimental mass, total ion intensity, lowest Sp, number of matches')
        lines.append('H\tLine fields: M, rank by xcorr score, rank by sp score, peptide mass, '
                     'deltaCn, xcorr score, sp score, number ions matched, total ions compared, sequence')
        self.handle.write('\n'.join(lines) + '\n')

    def write_matches(self, collection: MatchCollection, matches: Sequence[Match],
                      spectrum: MassSpectrum):
        if not matches:
            return
        charge = matches[0].charge
        sp_scores = [m.get_score(ScoreType.SP) for m in collection if m.has_score(ScoreType.SP)]
        lowest_sp = min(sp_scores) if sp_scores else 0.0
        self.handle.write(
            f"S\t{spectrum.first_scan}\t{spectrum.last_scan}\t{charge}\t0\tlocalhost\t"
            f"{spectrum.singly_charged_mass(charge):.4f}\t{spectrum.total_intensity:.4f}\t"
            f"{lowest_sp:.4f}\t{collection.experiment_size}\n"
        )
        for match in matches:
            xcorr_rank = match.get_rank(ScoreType.XCORR) if match.has_rank(ScoreType.XCORR) else 0
            sp_rank = match.get_rank(ScoreType.SP) if match.has_rank(ScoreType.SP) else 0
            xcorr = match.get_score(ScoreType.XCORR) if match.has_score(ScoreType.XCORR) else 0.0
            sp = match.get_score(ScoreType.SP) if match.has_score(ScoreType.SP) else 0.0
            self.handle.write(
                f"M\t{xcorr_rank}\t{sp_rank}\t{match.peptide.mass + PROTON_MASS:.4f}\t"
                f"{match.delta_cn:.4f}\t{xcorr:.4f}\t{sp:.4f}\t"
                f"{match.b_y_ion_matched}\t{match.b_y_ion_possible}\t"
                f"{match.sequence_sqt(self.symbols)}\tU\n"
            )
            for protein_id in match.peptide.protein_ids:
                self.handle.write(f"L\t{protein_id}\n")


class PepXMLWriter:
    """Class to write results in pepXML format."""

    def __init__(self, handle: TextIO, output_file: str, symbols: ModificationSymbols):
        self.handle = handle
        self.output_file = output_file
        self.symbols = symbols
        self.spectrum_counter = 0

    def write_header(self, config: SearchConfig, spectrum_file: str = '', database: str = ''):
        """Write pepXML header."""
        timestamp = datetime.now().strftime("%Y-%m-%dT%H:%M:%S")
        base_name = os.path.splitext(os.path.basename(spectrum_file))[0] if spectrum_file else 'spectra'
        raw_data = os.path.splitext(spectrum_file)[1] if spectrum_file else ''

        header = f'''<?xml version="1.0" encoding="UTF-8"?>
<msms_pipeline_analysis date="{timestamp}" xmlns="http://regis-web.systemsbiology.net/pepXML" xmlns:xsi="http://www.w3.org/2001/XMLSchema-instance" xsi:schemaLocation="http://sashimi.sourceforge.net/schema_revision/pepXML/pepXML_v117.xsd" summary_xml={quoteattr(self.output_file)}>
<msms_run_summary base_name={quoteattr(base_name)} raw_data_type="raw" raw_data={quoteattr(raw_data)} search_engine="pyXcorrSearch">
<sample_enzyme name="trypsin">
<specificity cut="KR" no_cut="P" sense="C"/>
</sample_enzyme>
<search_summary base_name={quoteattr(base_name)} search_engine="pyXcorrSearch" precursor_mass_type="monoisotopic" fragment_mass_type="monoisotopic" out_data_type="" out_data=".pep.xml" search_id="1">
<search_database local_path={quoteattr(database)} type="AA"/>
<enzymatic_search_constraint enzyme="trypsin" max_num_internal_cleavages="{config.missed_cleavages}" min_number_termini="2"/>
'''
        self.handle.write(header)
        for aa, delta in sorted(config.static_mods.items()):
            self.handle.write(f'<aminoacid_modification aminoacid="{aa}" massdiff="{delta:+.6f}" variable="N"/>\n')
        for aa, delta in sorted(config.variable_mods.items()):
            self.handle.write(f'<aminoacid_modification aminoacid="{aa}" massdiff="{delta:+.6f}" '
                              f'variable="Y" symbol="{self.symbols.symbol_for(delta)}"/>\n')
        self.handle.write(
            f'<parameter name="parent_mass_tolerance" value="{config.precursor_window}"/>\n'
            f'<parameter name="fragment_bin_width" value="{config.bin_width}"/>\n'
            f'<parameter name="fragment_bin_offset" value="{config.bin_offset}"/>\n'
            '</search_summary>\n'
        )

    def write_footer(self):
        """Write pepXML footer."""
        footer = '''</msms_run_summary>
</msms_pipeline_analysis>
'''
        self.handle.write(footer)

    def write_spectrum_query(self, spectrum: MassSpectrum, charge: int, matches: Sequence[Match],
                             rank_type: Optional[ScoreType], num_matches: int = 0):
        """
        Write one spectrum_query for a spectrum at one charge, with a
        search_hit per match in the given (best first) order.  Without a
        rank_type, hits are ranked by position.
        """
        if not matches:
            return
        self.spectrum_counter += 1
        neutral_mass = spectrum.neutral_mass(charge)

        self.handle.write(
            f'<spectrum_query spectrum={quoteattr(str(spectrum.scan_id))} start_scan="{spectrum.first_scan}" '
            f'end_scan="{spectrum.last_scan}" precursor_neutral_mass="{neutral_mass:.6f}" '
            f'assumed_charge="{charge}" index="{self.spectrum_counter}">\n'
            '<search_result>\n'
        )
        for position, match in enumerate(matches, 1):
            hit_rank = match.get_rank(rank_type) if rank_type and match.has_rank(rank_type) else position
            peptide = match.peptide
            proteins = peptide.protein_ids or ['']
            self.handle.write(
                f'<search_hit hit_rank="{hit_rank}" peptide="{peptide.sequence}" '
                f'peptide_prev_aa="{peptide.prev_aa}" peptide_next_aa="{peptide.next_aa}" '
                f'protein={quoteattr(proteins[0])} num_tot_proteins="{peptide.num_proteins}" '
                f'num_matched_ions="{match.b_y_ion_matched}" tot_num_ions="{match.b_y_ion_possible}" '
                f'calc_neutral_pep_mass="{peptide.mass:.6f}" massdiff="{match.mass_delta:.6f}" '
                f'num_tol_term="{match.num_terminal_cleavages()}" '
                f'num_missed_cleavages="{match.num_internal_cleavages()}" is_rejected="0">\n'
            )
            for protein_id in proteins[1:]:
                self.handle.write(f'<alternative_protein protein={quoteattr(protein_id)}/>\n')
            if peptide.modifications:
                self.handle.write(f'<modification_info modified_peptide={quoteattr(match.sequence_with_symbols(self.symbols))}/>\n')
            self.handle.write(f'<search_score name="delta_cn" value="{match.delta_cn:.4f}"/>\n')
            for score_type in match.scored_types:
                self.handle.write(f'<search_score name="{score_type.label}" '
                                  f'value="{match.get_score(score_type):.6g}"/>\n')
            if num_matches:
                self.handle.write(f'<search_score name="matches/spectrum" value="{num_matches}"/>\n')
            self.handle.write('</search_hit>\n')

        self.handle.write('</search_result>\n</spectrum_query>\n')


class OutputFiles:
    """
    The result files of one command, one per format for the targets and one
    per decoy set.
    """

    def __init__(self, config: SearchConfig, command: str = 'search',
                 spectrum_file: str = '', database: str = ''):
        self.config = config
        self.command = command
        self.spectrum_file = spectrum_file
        self.database = database
        self.matches_per_spectrum = config.top_match
        self.num_files = config.num_files
        self.target_decoy_list = make_target_decoy_list(self.num_files)
        self.symbols = ModificationSymbols(config.variable_mods.values())
        self._handles: List[TextIO] = []
        self._headers_written = False
        self._footers_written = False

        try:
            os.makedirs(config.output_dir, exist_ok=True)
        except OSError as e:
            logger.warning(f"Unable to create output directory '{config.output_dir}': {e}")

        logger.debug(f"OutputFiles is opening {self.num_files} files ({self.num_files - 1} decoys) "
                     f"in '{config.output_dir}' with root '{config.fileroot}'. Overwrite: {config.overwrite}.")

        self.tab_files: List[Optional[TabWriter]] = [None] * self.num_files
        self.sqt_files: List[Optional[SQTWriter]] = [None] * self.num_files
        self.xml_files: List[Optional[PepXMLWriter]] = [None] * self.num_files
        for index, target_decoy in enumerate(self.target_decoy_list):
            if config.write_tab:
                handle = self._open(target_decoy, 'txt')
                if handle:
                    self.tab_files[index] = TabWriter(handle, is_decoy=index > 0,
                                                      mod_precision=config.mod_precision)
            if config.write_sqt:
                handle = self._open(target_decoy, 'sqt')
                if handle:
                    self.sqt_files[index] = SQTWriter(handle, self.symbols)
            if config.write_pepxml:
                handle = self._open(target_decoy, 'pep.xml')
                if handle:
                    self.xml_files[index] = PepXMLWriter(handle, handle.name, self.symbols)

        self.feature_file: Optional[TextIO] = None
        if config.feature_file:
            self.feature_file = self._open(None, 'features.txt')

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def make_file_name(self, target_decoy: Optional[str], extension: str) -> str:
        return make_file_name(self.config.fileroot, self.command, target_decoy, extension,
                              self.config.output_dir)

    def _open(self, target_decoy: Optional[str], extension: str) -> Optional[TextIO]:
        handle = create_file(self.make_file_name(target_decoy, extension), self.config.overwrite)
        if handle:
            self._handles.append(handle)
        return handle

    # headers and footers

    def write_headers(self, num_proteins: int = 0):
        for index in range(self.num_files):
            tag = 'target' if index == 0 else 'decoy'
            if self.tab_files[index]:
                self.tab_files[index].write_header()
            if self.sqt_files[index]:
                self.sqt_files[index].write_header(tag, self.config, num_proteins, self.database)
            if self.xml_files[index]:
                self.xml_files[index].write_header(self.config, self.spectrum_file, self.database)
        self._headers_written = True

    def write_footers(self):
        for writer in self.xml_files:
            if writer:
                writer.write_footer()
        self._footers_written = True

    def write_feature_header(self, feature_names: Sequence[str] = PERCOLATOR_FEATURE_NAMES):
        if self.feature_file and feature_names:
            self.feature_file.write('scan\tlabel\t' + '\t'.join(feature_names) + '\n')

    # matches

    def write_matches(self, target: MatchCollection, decoys: Sequence[MatchCollection],
                      rank_type: ScoreType = ScoreType.XCORR,
                      spectrum: Optional[MassSpectrum] = None):
        """
        Write the top matches of the target collection and each decoy
        collection to their files.  Without a spectrum the collections are
        treated as spanning many spectra.

        Raises:
            ConfigurationError: if the number of decoy collections does not
                match the number of decoy files
        """
        if target is None:
            return
        if len(decoys) != self.num_files - 1:
            raise ConfigurationError(
                f"write_matches was given {len(decoys)} decoy collections but was expecting {self.num_files - 1}."
            )

        if spectrum is None:
            self.write_matches_multi_spectra(target, decoys, rank_type)
            return

        for index, collection in enumerate([target, *decoys]):
            if not collection.is_ranked(rank_type):
                collection.populate_ranks(rank_type)
            top = collection.top_matches(rank_type, self.matches_per_spectrum)
            if self.tab_files[index]:
                self.tab_files[index].write_matches(top, collection.experiment_size)
            if self.sqt_files[index]:
                self.sqt_files[index].write_matches(collection, top, spectrum)
            if self.xml_files[index] and top:
                self.xml_files[index].write_spectrum_query(spectrum, top[0].charge, top, rank_type,
                                                           collection.experiment_size)

    def write_matches_multi_spectra(self, target: MatchCollection,
                                    decoys: Sequence[MatchCollection] = (),
                                    rank_type: ScoreType = ScoreType.XCORR):
        """
        All matches of collections spanning many spectra, ordered by scan.
        pepXML gets one spectrum_query per spectrum and charge.
        """
        for index, collection in enumerate([target, *decoys]):
            if index >= self.num_files or len(collection) == 0:
                continue
            collection.spectrum_sort(rank_type)
            matches = list(collection)
            if self.tab_files[index]:
                self.tab_files[index].write_matches(matches)
            if self.xml_files[index]:
                groups: Dict[Tuple[int, int], List[Match]] = {}
                for match in matches:
                    groups.setdefault((id(match.spectrum), match.charge), []).append(match)
                for group in groups.values():
                    self.xml_files[index].write_spectrum_query(group[0].spectrum, group[0].charge,
                                                               group, None)

    def for_command(self, command: str, **overrides) -> 'OutputFiles':
        """A new set of files for another command sharing this run's settings."""
        return OutputFiles(self.config.updated(**overrides), command,
                           spectrum_file=self.spectrum_file, database=self.database)

    def write_match_features(self, match: Match, features: Sequence[float]):
        if not self.feature_file:
            return
        label = -1 if match.null_peptide else 1
        values = '\t'.join(f"{value:.4f}" for value in features)
        self.feature_file.write(f"{match.scan}\t{label}\t{values}\n")

    # ranked lists

    def _write_ranked(self, target_decoy: str, id_column: str, scores: Mapping[str, float]):
        handle = self._open(target_decoy, 'txt')
        if not handle:
            return
        ranked = sorted(scores.items(), key=lambda item: (-item[1], item[0]))
        frame = pd.DataFrame(ranked, columns=[id_column, 'score'])
        frame.to_csv(handle, sep='\t', index=False, float_format='%.6g')

    def write_ranked_proteins(self, protein_scores: Mapping[str, float]):
        """Protein ids and scores, highest score first."""
        self._write_ranked('proteins', 'protein id', protein_scores)

    def write_ranked_peptides(self, peptide_scores: Mapping[str, float]):
        """Peptide sequences and scores, highest score first."""
        self._write_ranked('peptides', 'sequence', peptide_scores)

    def close(self):
        if self._headers_written and not self._footers_written:
            self.write_footers()
        for handle in self._handles:
            handle.close()
        self._handles = []


def write_processed_spectra(handle: TextIO, spectra: Sequence[MassSpectrum], scorer,
                            charge_states: Sequence[int], stop_after: str = 'xcorr') -> int:
    """
    Write each (spectrum, charge) in MS2 format with its peaks replaced by
    the non-zero bins left after the stop_after preprocessing stage.

    Returns:
        number of (spectrum, charge) pairs written

    Raises:
        ConfigurationError: if stop_after is not a preprocessing stage
    """
    if stop_after not in STOP_AFTER_STAGES:
        raise ConfigurationError(
            f"Invalid value '{stop_after}' for stop-after. Must be one of {', '.join(STOP_AFTER_STAGES)}."
        )
    handle.write("H\tComment\tSpectra processed as for Xcorr\n")
    count = 0
    for spectrum, charge in iter_spectrum_charges(spectra, charge_states):
        logger.debug(f"Processing spectrum {spectrum.first_scan} charge {charge}.")
        peaks = scorer.processed_peaks(spectrum, charge, stop_after)
        handle.write(f"S\t{spectrum.first_scan}\t{spectrum.last_scan}\t{spectrum.precursor_mz:.4f}\n")
        handle.write(f"Z\t{charge}\t{spectrum.singly_charged_mass(charge):.4f}\n")
        for bin_idx in np.flatnonzero(peaks):
            handle.write(f"{bin_idx * scorer.bin_width:.4f}\t{peaks[bin_idx]:.4f}\n")
        count += 1
    return count
