"""Tests for the command-line entry point."""

import pytest

from pyxcorrsearch import __version__
from pyxcorrsearch.cli import main, parse_charge_states

FASTA_TEXT = """>P1
MKAEPTIDEKLLGGSSTRWYHHWFRK
"""

MS2_TEXT = """H\tComment\tsynthetic
S\t3\t3\t451.7276
Z\t2\t902.4479
175.1190\t100.0
262.1510\t400.0
476.2820\t900.0
"""


@pytest.fixture
def ms2_file(tmp_path):
    path = tmp_path / 'run.ms2'
    path.write_text(MS2_TEXT)
    return str(path)


def test_parse_charge_states():
    assert parse_charge_states('1, 2,3') == [1, 2, 3]


def test_version(capsys):
    with pytest.raises(SystemExit) as excinfo:
        main(['--version'])
    assert excinfo.value.code == 0
    assert capsys.readouterr().out.strip().endswith(__version__)


def test_search_command(tmp_path, ms2_file):
    fasta = tmp_path / 'db.fasta'
    fasta.write_text(FASTA_TEXT)
    out = tmp_path / 'out'
    status = main(['search', str(fasta), ms2_file, '-o', str(out), '--charge-states', '2',
                   '--feature-file', '--seed', '3'])
    assert status == 0
    assert (out / 'search.target.txt').exists()
    assert (out / 'search.features.txt').exists()


def test_search_command_reports_bad_config(tmp_path, ms2_file):
    fasta = tmp_path / 'db.fasta'
    fasta.write_text(FASTA_TEXT)
    config = tmp_path / 'config.yaml'
    config.write_text('top_matches: 2\n')
    assert main(['search', str(fasta), ms2_file, '-c', str(config)]) == 1


def test_print_processed_spectra(tmp_path, ms2_file):
    out = tmp_path / 'out'
    status = main(['print-processed-spectra', ms2_file, 'processed.ms2', '-o', str(out),
                   '--stop-after', 'ten-bin'])
    assert status == 0
    lines = (out / 'processed.ms2').read_text().splitlines()
    assert lines[0] == 'H\tComment\tSpectra processed as for Xcorr'
    assert lines[1].startswith('S\t3\t3\t')


def test_print_processed_spectra_invalid_stage(tmp_path, ms2_file):
    status = main(['print-processed-spectra', ms2_file, 'processed.ms2', '-o', str(tmp_path / 'out'),
                   '--stop-after', 'remove-grass'])
    assert status == 1
