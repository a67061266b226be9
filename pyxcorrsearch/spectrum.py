"""
Observed spectra and the readers that produce them.

Spectra are read from mzML (pymzml), MGF (pyteomics) or MS2 text files and
iterated as (spectrum, charge) pairs in file order.  A match references its
spectrum but never owns it.
"""

import logging
import re
from typing import Iterator, List, Optional, Tuple

import numpy as np
import pymzml
from pyteomics import mgf

logger = logging.getLogger(__name__)

PROTON_MASS = 1.007276


class MassSpectrum:
    """Represents a mass spectrum with m/z and intensity values."""

    def __init__(self, mz_array: np.ndarray, intensity_array: np.ndarray,
                 scan_id: str = "", precursor_mz: float = 0.0, charges: Optional[List[int]] = None,
                 first_scan: Optional[int] = None, last_scan: Optional[int] = None):
        self.mz_array = np.asarray(mz_array, dtype=float)
        self.intensity_array = np.asarray(intensity_array, dtype=float)
        self.scan_id = scan_id
        self.precursor_mz = precursor_mz
        self.charges = list(charges) if charges else []
        self.first_scan = first_scan if first_scan is not None else extract_scan_number(scan_id)
        self.last_scan = last_scan if last_scan is not None else self.first_scan

    def __repr__(self):
        return f"MassSpectrum(scan={self.first_scan}, precursor_mz={self.precursor_mz:.4f}, peaks={len(self.mz_array)})"

    @property
    def num_peaks(self) -> int:
        return len(self.mz_array)

    @property
    def total_intensity(self) -> float:
        return float(self.intensity_array.sum())

    def neutral_mass(self, charge: int) -> float:
        """Neutral precursor mass assuming the given charge."""
        return (self.precursor_mz - PROTON_MASS) * charge

    def singly_charged_mass(self, charge: int) -> float:
        """[M+H]+ precursor mass assuming the given charge."""
        return self.neutral_mass(charge) + PROTON_MASS


def extract_scan_number(scan_id) -> int:
    """Extract scan number from scan ID, 0 if none can be found."""
    scan_id_str = str(scan_id)

    match = re.search(r'scan[=\s]*(\d+)', scan_id_str, re.IGNORECASE)
    if match:
        return int(match.group(1))

    match = re.search(r'(\d+)', scan_id_str)
    if match:
        return int(match.group(1))

    return 0


def read_mzml(mzml_file: str, max_spectra: int = 0) -> List[MassSpectrum]:
    """Read MS2 spectra from mzML file using pymzml."""
    spectra = []

    run = pymzml.run.Reader(mzml_file)

    for spectrum in run:
        if spectrum.ms_level != 2:
            continue

        precursor_mz = 0.0
        charges = []

        if spectrum.selected_precursors:
            precursor = spectrum.selected_precursors[0]
            precursor_mz = float(precursor.get('mz', 0.0))
            if precursor.get('charge'):
                charges = [int(precursor['charge'])]

        scan_id = spectrum.ID
        peaks = spectrum.peaks('centroided')
        if len(peaks) == 0:
            continue

        spectra.append(MassSpectrum(
            mz_array=np.array([peak[0] for peak in peaks]),
            intensity_array=np.array([peak[1] for peak in peaks]),
            scan_id=str(scan_id),
            precursor_mz=precursor_mz,
            charges=charges,
        ))

        if max_spectra > 0 and len(spectra) >= max_spectra:
            break

    return spectra


def _mgf_charges(charge_param) -> List[int]:
    # pyteomics gives a ChargeList, an int or a string depending on the file
    if charge_param is None:
        return []
    if not isinstance(charge_param, (list, tuple)):
        charge_param = [charge_param]
    charges = []
    for value in charge_param:
        try:
            charges.append(int(str(value).rstrip('+')))
        except ValueError:
            continue
    return charges


def read_mgf(mgf_file: str, max_spectra: int = 0) -> List[MassSpectrum]:
    """Read mass spectra from MGF file using pyteomics."""
    spectra = []

    with mgf.read(mgf_file) as reader:
        for spectrum_idx, spectrum in enumerate(reader):
            params = spectrum.get('params', {})

            # pepmass can be a float or a (mass, intensity) tuple
            pepmass = params.get('pepmass', 0.0)
            if isinstance(pepmass, (list, tuple)):
                precursor_mz = float(pepmass[0]) if pepmass else 0.0
            else:
                precursor_mz = float(pepmass or 0.0)

            scan_id = params.get('scans') or params.get('title', f"scan_{spectrum_idx + 1}")
            mz_array = spectrum.get('m/z array', np.array([]))
            intensity_array = spectrum.get('intensity array', np.array([]))

            if len(mz_array) == 0:
                continue

            spectra.append(MassSpectrum(
                mz_array=mz_array,
                intensity_array=intensity_array,
                scan_id=str(scan_id),
                precursor_mz=precursor_mz,
                charges=_mgf_charges(params.get('charge')),
            ))

            if max_spectra > 0 and len(spectra) >= max_spectra:
                break

    return spectra


def read_ms2(ms2_file: str, max_spectra: int = 0) -> List[MassSpectrum]:
    """
    Read spectra from an MS2 text file.

    S lines open a spectrum (first scan, last scan, precursor m/z), Z lines
    list possible charge states with their [M+H]+ mass, peak lines hold m/z
    and intensity.
    """
    spectra = []
    current = None
    mz_values: List[float] = []
    intensities: List[float] = []

    def flush():
        if current is not None and mz_values:
            current.mz_array = np.array(mz_values)
            current.intensity_array = np.array(intensities)
            spectra.append(current)

    with open(ms2_file) as f:
        for line in f:
            fields = line.split()
            if not fields or fields[0] in ('H', 'I', 'D'):
                continue
            if fields[0] == 'S':
                flush()
                if max_spectra > 0 and len(spectra) >= max_spectra:
                    return spectra
                first_scan, last_scan = int(fields[1]), int(fields[2])
                current = MassSpectrum(
                    mz_array=np.array([]), intensity_array=np.array([]),
                    scan_id=f"scan={first_scan}", precursor_mz=float(fields[3]),
                    first_scan=first_scan, last_scan=last_scan,
                )
                mz_values, intensities = [], []
            elif fields[0] == 'Z':
                if current is None:
                    raise ValueError(f"Z line before any S line in {ms2_file}")
                current.charges.append(int(fields[1]))
            else:
                if current is None:
                    raise ValueError(f"Peak line before any S line in {ms2_file}")
                mz_values.append(float(fields[0]))
                intensities.append(float(fields[1]))

    flush()
    return spectra


def read_spectra(spectrum_file: str, max_spectra: int = 0) -> List[MassSpectrum]:
    """Read spectra, choosing the reader from the file extension."""
    lower = spectrum_file.lower()
    if lower.endswith('.mzml'):
        spectra = read_mzml(spectrum_file, max_spectra)
    elif lower.endswith('.mgf'):
        spectra = read_mgf(spectrum_file, max_spectra)
    elif lower.endswith('.ms2'):
        spectra = read_ms2(spectrum_file, max_spectra)
    else:
        raise ValueError(f"Unsupported spectrum file format: {spectrum_file}")
    logger.info(f"Read {len(spectra)} MS2 spectra from {spectrum_file}")
    return spectra


def iter_spectrum_charges(spectra: List[MassSpectrum],
                          charge_states: List[int]) -> Iterator[Tuple[MassSpectrum, int]]:
    """
    Yield (spectrum, charge) pairs in file order.

    A spectrum with charges from its file is searched at those charges,
    otherwise at each of the configured charge states.
    """
    for spectrum in spectra:
        charges = spectrum.charges if spectrum.charges else charge_states
        for charge in charges:
            yield spectrum, charge
