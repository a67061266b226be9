"""Shared fixtures for building spectra, peptides and matches."""

import numpy as np
import pytest

from pyxcorrsearch.match import Match, ScoreType
from pyxcorrsearch.peptides import MassTable, Peptide
from pyxcorrsearch.spectrum import MassSpectrum


@pytest.fixture
def mass_table():
    return MassTable({'C': 57.021464})


@pytest.fixture
def spectrum():
    return MassSpectrum(
        np.array([175.119, 262.151, 363.198, 476.282, 589.366]),
        np.array([100.0, 400.0, 250.0, 900.0, 50.0]),
        scan_id='controllerType=0 controllerNumber=1 scan=7',
        precursor_mz=450.75,
        charges=[2],
    )


@pytest.fixture
def make_peptide(mass_table):
    def _make(sequence='PEPTIDEK', protein_ids=('P1',), prev_aa='K', next_aa='A',
              modifications=None, is_decoy=False):
        return Peptide(sequence, list(protein_ids), mass_table.peptide_mass(sequence, modifications),
                       prev_aa=prev_aa, next_aa=next_aa, modifications=modifications,
                       is_decoy=is_decoy)
    return _make


@pytest.fixture
def make_match(make_peptide, spectrum):
    def _make(sequence='PEPTIDEK', xcorr=None, sp=None, charge=2, match_spectrum=None, **peptide_args):
        match = Match(make_peptide(sequence, **peptide_args), match_spectrum or spectrum, charge)
        if xcorr is not None:
            match.set_score(ScoreType.XCORR, xcorr)
        if sp is not None:
            match.set_score(ScoreType.SP, sp)
        return match
    return _make
