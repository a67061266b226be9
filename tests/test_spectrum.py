"""Tests for spectra and spectrum file readers."""

import numpy as np
import pytest

from pyxcorrsearch.spectrum import (
    PROTON_MASS,
    MassSpectrum,
    extract_scan_number,
    iter_spectrum_charges,
    read_mgf,
    read_ms2,
    read_spectra,
)

MS2_TEXT = """H\tCreationDate\ttoday
S\t10\t10\t450.7500
Z\t2\t900.4927
Z\t3\t1350.7354
100.0\t10.0
200.0\t20.0
S\t11\t12\t600.2500
Z\t2\t1199.4927
150.0\t5.0
"""

MGF_TEXT = """BEGIN IONS
TITLE=first spectrum
PEPMASS=450.75 1000.0
CHARGE=2+
SCANS=12
100.0 10.0
200.0 20.0
END IONS
BEGIN IONS
TITLE=second spectrum scan=40
PEPMASS=600.25
150.0 5.0
END IONS
"""


class TestMassSpectrum:
    """Tests for the spectrum type."""

    def test_masses(self):
        spectrum = MassSpectrum([100.0], [1.0], scan_id='scan=5', precursor_mz=500.0)
        assert spectrum.neutral_mass(2) == pytest.approx((500.0 - PROTON_MASS) * 2)
        assert spectrum.singly_charged_mass(2) == pytest.approx(spectrum.neutral_mass(2) + PROTON_MASS)

    def test_scan_numbers(self):
        assert extract_scan_number('controllerType=0 controllerNumber=1 scan=1234') == 1234
        assert extract_scan_number('index=77') == 77
        assert extract_scan_number('no digits') == 0
        spectrum = MassSpectrum([100.0], [1.0], scan_id='scan=5')
        assert spectrum.first_scan == spectrum.last_scan == 5

    def test_peak_summaries(self):
        spectrum = MassSpectrum([100.0, 200.0], [1.5, 2.5])
        assert spectrum.num_peaks == 2
        assert spectrum.total_intensity == pytest.approx(4.0)


class TestReaders:
    """Tests for reading MS2 and MGF files."""

    def test_read_ms2(self, tmp_path):
        path = tmp_path / 'run.ms2'
        path.write_text(MS2_TEXT)
        spectra = read_ms2(str(path))
        assert len(spectra) == 2
        first, second = spectra
        assert (first.first_scan, first.last_scan) == (10, 10)
        assert first.charges == [2, 3]
        assert first.precursor_mz == pytest.approx(450.75)
        np.testing.assert_allclose(first.mz_array, [100.0, 200.0])
        assert (second.first_scan, second.last_scan) == (11, 12)

    def test_read_ms2_limit(self, tmp_path):
        path = tmp_path / 'run.ms2'
        path.write_text(MS2_TEXT)
        assert len(read_ms2(str(path), max_spectra=1)) == 1

    def test_read_mgf(self, tmp_path):
        path = tmp_path / 'run.mgf'
        path.write_text(MGF_TEXT)
        spectra = read_mgf(str(path))
        assert len(spectra) == 2
        assert spectra[0].first_scan == 12
        assert spectra[0].charges == [2]
        assert spectra[0].precursor_mz == pytest.approx(450.75)
        assert spectra[1].first_scan == 40
        assert spectra[1].charges == []

    def test_dispatch_by_extension(self, tmp_path):
        path = tmp_path / 'run.MS2'
        path.write_text(MS2_TEXT)
        assert len(read_spectra(str(path))) == 2
        with pytest.raises(ValueError):
            read_spectra(str(tmp_path / 'run.raw'))


class TestSpectrumCharges:
    """Tests for iterating (spectrum, charge) pairs."""

    def test_file_charges_take_precedence(self):
        known = MassSpectrum([100.0], [1.0], scan_id='scan=1', charges=[3])
        unknown = MassSpectrum([100.0], [1.0], scan_id='scan=2')
        pairs = [(s.first_scan, z) for s, z in iter_spectrum_charges([known, unknown], [2, 3])]
        assert pairs == [(1, 3), (2, 2), (2, 3)]
