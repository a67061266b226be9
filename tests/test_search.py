"""End-to-end tests of the search loop on synthetic spectra."""

import os

import numpy as np
import pandas as pd
import pytest

from pyxcorrsearch.config import SearchConfig
from pyxcorrsearch.match import ScoreType
from pyxcorrsearch.match_collection import MatchCollection
from pyxcorrsearch.output import OutputFiles
from pyxcorrsearch.peptides import MassTable, build_peptide_index
from pyxcorrsearch.scoring import XCorrScorer
from pyxcorrsearch.search import SearchEngine, best_peptide_scores, report_interval, run_search
from pyxcorrsearch.spectrum import PROTON_MASS, MassSpectrum

FASTA_TEXT = """>P1 first protein
MKAEPTIDEKLLGGSSTRWYHHWFRK
>P2 second protein
GGRAEPTIDEKNNQQR
"""


@pytest.fixture
def fasta_file(tmp_path):
    path = tmp_path / 'db.fasta'
    path.write_text(FASTA_TEXT)
    return str(path)


@pytest.fixture
def peptide_index(fasta_file):
    return build_peptide_index(fasta_file, MassTable({'C': 57.021464}))


def synthetic_spectrum(peptide, scan, charge=2):
    scorer = XCorrScorer(MassTable({'C': 57.021464}))
    b_ions, y_ions = scorer.theoretical_ions(peptide, charge)
    mzs = sorted(mzs[0] for mzs in b_ions + y_ions)
    precursor_mz = (peptide.mass + charge * PROTON_MASS) / charge
    return MassSpectrum(np.array(mzs), np.full(len(mzs), 100.0), scan_id=f'scan={scan}',
                        precursor_mz=precursor_mz, charges=[charge])


def find_peptide(peptide_index, sequence):
    return next(p for p in peptide_index.peptides if p.sequence == sequence)


@pytest.fixture
def spectra(peptide_index):
    matching = synthetic_spectrum(find_peptide(peptide_index, 'AEPTIDEK'), scan=1)
    # nothing in the database lies near this precursor
    empty = MassSpectrum(np.array([200.0, 300.0]), np.array([10.0, 10.0]), scan_id='scan=2',
                         precursor_mz=3000.0, charges=[2])
    return [matching, empty]


def write_ms2(path, spectra):
    with open(path, 'w') as f:
        f.write('H\tComment\tsynthetic\n')
        for spectrum in spectra:
            f.write(f"S\t{spectrum.first_scan}\t{spectrum.last_scan}\t{spectrum.precursor_mz:.4f}\n")
            for charge in spectrum.charges:
                f.write(f"Z\t{charge}\t{spectrum.singly_charged_mass(charge):.4f}\n")
            for mz, intensity in zip(spectrum.mz_array, spectrum.intensity_array):
                f.write(f"{mz:.4f}\t{intensity:.1f}\n")


class TestSearchEngine:
    """Tests for scoring one spectrum and a whole run."""

    def test_search_spectrum(self, peptide_index, spectra):
        engine = SearchEngine(SearchConfig(charge_states=[2]), peptide_index)
        target, decoys = engine.search_spectrum(spectra[0], 2)
        assert len(decoys) == 1
        best = target.match_at_rank(ScoreType.XCORR, 1)
        assert best.sequence == 'AEPTIDEK'
        assert best.get_rank(ScoreType.SP) >= 1
        assert best.b_y_ion_matched == best.b_y_ion_possible == 14
        assert all(match.null_peptide for match in decoys[0])
        assert all(match.peptide.protein_ids[0].startswith('decoy_') for match in decoys[0])

    def test_max_matches_below_preliminary_rank(self, peptide_index, spectra):
        config = SearchConfig(charge_states=[2], max_matches=1, max_rank_preliminary=500,
                              precursor_window=2000.0)
        engine = SearchEngine(config, peptide_index)
        candidates = peptide_index.candidates(spectra[0].neutral_mass(2), config.precursor_window)
        assert len(candidates) > 1
        target, decoys = engine.search_spectrum(spectra[0], 2)
        assert len(target) == 1
        assert target.experiment_size == len(candidates)
        assert target[0].has_score(ScoreType.XCORR)
        assert all(len(decoy) == 1 for decoy in decoys)

    def test_no_candidates(self, peptide_index, spectra):
        engine = SearchEngine(SearchConfig(charge_states=[2]), peptide_index)
        assert engine.search_spectrum(spectra[1], 2) is None

    def test_decoys_are_reproducible(self, peptide_index, spectra):
        engine = SearchEngine(SearchConfig(seed=5), peptide_index)
        candidates = peptide_index.candidates(spectra[0].neutral_mass(2), 3.0)
        first = engine.make_decoys(spectra[0], 2, candidates, 0)
        second = engine.make_decoys(spectra[0], 2, candidates, 0)
        assert [p.sequence for p in first] == [p.sequence for p in second]
        assert all(p.sequence[-1] == p.unshuffled_sequence[-1] for p in first)
        assert all(sorted(p.sequence) == sorted(p.unshuffled_sequence) for p in first)

    def test_run_without_output(self, peptide_index, spectra):
        engine = SearchEngine(SearchConfig(charge_states=[2], num_decoy_files=2), peptide_index)
        result = engine.run(spectra)
        assert result.num_spectra == 2
        assert result.num_searched == 1
        assert len(result.targets) == 1
        assert len(result.decoys) == 2
        target = result.targets[0]
        assert target.sequence == 'AEPTIDEK'
        # the exact-match target outscores its shuffled decoys
        assert target.get_score(ScoreType.DECOY_XCORR_QVALUE) == 0.0
        assert list(result.qvalues) == [0.0]
        assert {hit.protein_id for hit in result.hits} == {'P1', 'P2'}

    def test_run_with_pvalues(self, peptide_index, spectra):
        config = SearchConfig(charge_states=[2], compute_pvalues=True)
        result = SearchEngine(config, peptide_index).run(spectra)
        target = result.targets[0]
        assert target.has_score(ScoreType.LOGP_BONF_WEIBULL_XCORR)
        assert target.has_score(ScoreType.DECOY_PVALUE_QVALUE)
        assert target.has_score(ScoreType.DECOY_XCORR_QVALUE)

    def test_run_writes_files(self, tmp_path, peptide_index, spectra):
        config = SearchConfig(charge_states=[2], output_dir=str(tmp_path), feature_file=True)
        with OutputFiles(config) as output:
            SearchEngine(config, peptide_index).run(spectra, output, num_proteins=2)

        target = pd.read_csv(tmp_path / 'search.target.txt', sep='\t')
        assert target['sequence'][0] == 'AEPTIDEK'
        assert set(target['scan']) == {1}
        features = (tmp_path / 'search.features.txt').read_text().splitlines()
        assert len(features) == 3
        proteins = pd.read_csv(tmp_path / 'search.proteins.txt', sep='\t')
        assert sorted(proteins['protein id']) == ['P1', 'P2']
        peptides = pd.read_csv(tmp_path / 'search.peptides.txt', sep='\t')
        assert list(peptides['sequence']) == ['AEPTIDEK']

        best = pd.read_csv(tmp_path / 'qvalues.target.txt', sep='\t')
        assert list(best['sequence']) == ['AEPTIDEK']
        assert list(best['decoy q-value (xcorr)']) == [0.0]
        assert len(pd.read_csv(tmp_path / 'qvalues.decoy.txt', sep='\t')) == 1
        pepxml = (tmp_path / 'qvalues.target.pep.xml').read_text()
        assert 'name="decoy_xcorr_qvalue" value="0"' in pepxml


class TestRunSearch:
    """Tests for searching files from disk."""

    def test_run_search(self, tmp_path, fasta_file, spectra):
        ms2_file = str(tmp_path / 'run.ms2')
        write_ms2(ms2_file, spectra)
        out = tmp_path / 'results'
        config = SearchConfig(charge_states=[2], output_dir=str(out), fileroot='run1')
        result = run_search(fasta_file, ms2_file, config)
        assert result.num_spectra == 2
        assert result.targets[0].sequence == 'AEPTIDEK'
        assert sorted(os.listdir(out)) == [
            'run1.qvalues.decoy.pep.xml', 'run1.qvalues.decoy.txt',
            'run1.qvalues.target.pep.xml', 'run1.qvalues.target.txt',
            'run1.search.decoy.pep.xml', 'run1.search.decoy.sqt', 'run1.search.decoy.txt',
            'run1.search.peptides.txt', 'run1.search.proteins.txt',
            'run1.search.target.pep.xml', 'run1.search.target.sqt', 'run1.search.target.txt',
        ]
        pepxml = (out / 'run1.search.target.pep.xml').read_text()
        assert pepxml.rstrip().endswith('</msms_pipeline_analysis>')


class TestHelpers:
    """Tests for progress and ranking helpers."""

    @pytest.mark.parametrize('num_spectra,expected', [(5, 10), (100, 10), (500, 50), (5000, 100)])
    def test_report_interval(self, num_spectra, expected):
        assert report_interval(num_spectra) == expected

    def test_best_peptide_scores(self, make_match):
        collection = MatchCollection(matches=[
            make_match('AEPTIDEK', xcorr=1.0),
            make_match('AEPTIDEK', xcorr=2.5),
            make_match('LLGGSSTR', xcorr=0.5),
        ])
        assert best_peptide_scores(collection, ScoreType.XCORR) == {'AEPTIDEK': 2.5, 'LLGGSSTR': 0.5}
