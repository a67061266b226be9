"""
Fast SEQUEST cross-correlation and preliminary Sp scoring.

Based on Eng et al. (2008): "A Fast SEQUEST Cross Correlation Algorithm".
The XCorr is computed without FFTs by preprocessing the observed spectrum
once (binning, square root, ten-window normalisation, background
subtraction) and taking a dot product with each unit-intensity theoretical
b/y ion spectrum.
"""

import logging
import math
from typing import List, Optional, Tuple

import numpy as np

from .exceptions import ConfigurationError
from .peptides import H2O_MASS, MassTable, Peptide
from .spectrum import PROTON_MASS, MassSpectrum

logger = logging.getLogger(__name__)

STOP_AFTER_STAGES = ('discretize', 'square-root', 'ten-bin', 'xcorr')

NUM_WINDOWS = 10
WINDOW_MAX_INTENSITY = 50.0
XCORR_OFFSET = 75
XCORR_SCALE = 0.005
HISTO_SIZE = 1000
MIN_SCORES_FOR_EVALUE = 10

# Sp bonus for each b or y ion whose predecessor in the series also matched
SP_CONSECUTIVE_BONUS = 0.075


class ProcessedSpectrum:
    """The intermediate arrays of one observed spectrum, prepared once per charge."""

    def __init__(self, spectrum: MassSpectrum, charge: int, binned: np.ndarray,
                 windowed: np.ndarray, xcorr_ready: np.ndarray):
        self.spectrum = spectrum
        self.charge = charge
        self.binned = binned
        self.windowed = windowed
        self.xcorr_ready = xcorr_ready

    @property
    def max_bin(self) -> int:
        nonzero = np.flatnonzero(self.binned)
        return int(nonzero[-1]) if len(nonzero) else 0


class XCorrScorer:
    """
    Comet-style scorer.

    1. Spectrum binning (1.0005079 Da bins, 0.4 offset)
    2. Square root of intensities
    3. MakeCorrData windowing normalization (10 windows, normalize to 50.0)
    4. Fast XCorr preprocessing with sliding window (offset=75)
    5. Dot product with the theoretical spectrum, scaled by 0.005
    """

    def __init__(self, mass_table: Optional[MassTable] = None, bin_width: float = 1.0005079,
                 bin_offset: float = 0.4, max_mz: float = 2000.0):
        self.mass_table = mass_table or MassTable({'C': 57.021464})
        self.bin_width = bin_width
        self.inverse_bin_width = 1.0 / bin_width
        self.bin_offset = bin_offset
        self.max_mz = max_mz
        self.num_bins = self.bin_mass(max_mz) + 1

    def bin_mass(self, mass: float) -> int:
        """BIN(dMass) = (int)(dMass * dInverseBinWidth + dOneMinusBinOffset)"""
        return int(mass * self.inverse_bin_width + self.bin_offset)

    def discretize(self, spectrum: MassSpectrum, take_sqrt: bool = True) -> np.ndarray:
        """Bin peaks keeping the highest (optionally square-rooted) intensity per bin."""
        binned = np.zeros(self.num_bins)
        for mz, intensity in zip(spectrum.mz_array, spectrum.intensity_array):
            if not 0.0 <= mz <= self.max_mz or intensity <= 0:
                continue
            value = math.sqrt(intensity) if take_sqrt else intensity
            bin_idx = self.bin_mass(mz)
            if bin_idx < self.num_bins and value > binned[bin_idx]:
                binned[bin_idx] = value
        return binned

    def make_corr_data(self, binned: np.ndarray) -> np.ndarray:
        """
        Ten-window normalisation: each window is scaled so its tallest peak is
        50.0, dropping peaks under 5% of the base peak.
        """
        windowed = np.zeros_like(binned)
        nonzero = np.flatnonzero(binned)
        if len(nonzero) == 0:
            return windowed

        highest_ion = int(nonzero[-1])
        threshold = 0.05 * binned.max()
        window_size = (highest_ion // NUM_WINDOWS) + 1

        for i in range(NUM_WINDOWS):
            start = i * window_size
            stop = min(start + window_size, highest_ion + 1)
            if start >= stop:
                break
            window = binned[start:stop]
            max_window_intensity = window.max()
            if max_window_intensity > 0.0:
                keep = window > threshold
                windowed[start:stop][keep] = window[keep] * (WINDOW_MAX_INTENSITY / max_window_intensity)

        return windowed

    def preprocess_for_xcorr(self, windowed: np.ndarray) -> np.ndarray:
        """
        Subtract the mean of the surrounding +/-75 bins from every bin and add
        half of each neighbour's corrected intensity (flanking peaks).
        """
        n = len(windowed)
        window_range = 2 * XCORR_OFFSET + 1
        cumulative = np.concatenate(([0.0], np.cumsum(windowed)))

        idx = np.arange(n)
        lower = np.clip(idx - XCORR_OFFSET, 0, n)
        upper = np.clip(idx + XCORR_OFFSET + 1, 0, n)
        window_sums = cumulative[upper] - cumulative[lower]
        background = (window_sums - windowed) / (window_range - 1.0)

        corrected = windowed - background
        final = corrected.copy()
        final[1:] += 0.5 * corrected[:-1]
        final[:-1] += 0.5 * corrected[1:]
        final[0] = 0.0
        return final

    def prepare(self, spectrum: MassSpectrum, charge: int) -> ProcessedSpectrum:
        binned = self.discretize(spectrum)
        windowed = self.make_corr_data(binned)
        return ProcessedSpectrum(spectrum, charge, binned, windowed, self.preprocess_for_xcorr(windowed))

    def processed_peaks(self, spectrum: MassSpectrum, charge: int, stop_after: str = 'xcorr') -> np.ndarray:
        """The spectrum as it looks after the named preprocessing stage."""
        if stop_after not in STOP_AFTER_STAGES:
            raise ConfigurationError(
                f"Invalid value '{stop_after}' for stop-after. Must be one of {', '.join(STOP_AFTER_STAGES)}."
            )
        if stop_after == 'discretize':
            return self.discretize(spectrum, take_sqrt=False)
        binned = self.discretize(spectrum)
        if stop_after == 'square-root':
            return binned
        windowed = self.make_corr_data(binned)
        if stop_after == 'ten-bin':
            return windowed
        return self.preprocess_for_xcorr(windowed)

    def theoretical_ions(self, peptide: Peptide, charge: int) -> Tuple[List[List[float]], List[List[float]]]:
        """
        b and y ion m/z values, one list per residue cleavage, each holding
        the m/z at fragment charges 1+ up to min(charge - 1, 3)+.
        """
        masses = self.mass_table.residue_masses(peptide.sequence, peptide.modifications)
        max_frag_charge = max(min(charge - 1, 3), 1)

        def ladder(neutral_start: float, residues) -> List[List[float]]:
            ions = []
            running = neutral_start
            for residue_mass in residues:
                running += residue_mass
                ions.append([(running + (z - 1) * PROTON_MASS) / z for z in range(1, max_frag_charge + 1)])
            return ions

        b_ions = ladder(PROTON_MASS, masses[:-1])
        y_ions = ladder(H2O_MASS + PROTON_MASS, masses[:0:-1])
        return b_ions, y_ions

    def generate_theoretical_spectrum(self, peptide: Peptide, charge: int) -> np.ndarray:
        """Unit-intensity binned b/y ion spectrum."""
        spectrum = np.zeros(self.num_bins)
        b_ions, y_ions = self.theoretical_ions(peptide, charge)
        for series in (b_ions, y_ions):
            for mzs in series:
                for mz in mzs:
                    if 0.0 <= mz <= self.max_mz:
                        bin_idx = self.bin_mass(mz)
                        if bin_idx < self.num_bins:
                            spectrum[bin_idx] = 1.0
        return spectrum

    def calculate_xcorr(self, theoretical: np.ndarray, processed: ProcessedSpectrum) -> float:
        raw_xcorr = float(np.dot(theoretical, processed.xcorr_ready))
        return round(raw_xcorr * XCORR_SCALE, 4)

    def score_xcorr(self, peptide: Peptide, processed: ProcessedSpectrum) -> float:
        return self.calculate_xcorr(self.generate_theoretical_spectrum(peptide, processed.charge), processed)

    def score_sp(self, peptide: Peptide, processed: ProcessedSpectrum) -> Tuple[float, int, int]:
        """
        Preliminary SEQUEST Sp score.

        Sp = (sum of matched intensities) * matched * (1 + bonus) / possible,
        where the bonus grows by 0.075 for every consecutive matched ion.

        Returns:
            (sp, b/y ions matched, b/y ions possible) using singly charged ions
        """
        b_ions, y_ions = self.theoretical_ions(peptide, processed.charge)
        observed = processed.binned

        matched = 0
        possible = 0
        intensity_sum = 0.0
        bonus = 0.0
        for series in (b_ions, y_ions):
            previous_matched = False
            for mzs in series:
                mz = mzs[0]
                possible += 1
                bin_idx = self.bin_mass(mz)
                if 0.0 <= mz <= self.max_mz and bin_idx < self.num_bins and observed[bin_idx] > 0:
                    matched += 1
                    intensity_sum += observed[bin_idx]
                    if previous_matched:
                        bonus += SP_CONSECUTIVE_BONUS
                    previous_matched = True
                else:
                    previous_matched = False

        if possible == 0:
            return 0.0, 0, 0
        sp = intensity_sum * matched * (1.0 + bonus) / possible
        return sp, matched, possible

    def fit_e_value(self, xcorr_scores: List[float]) -> Optional[Tuple[float, float]]:
        """
        Linear fit to the log survival function of the XCorr histogram (bins
        of 0.1 XCorr units).

        Returns:
            (slope, intercept), or None when too few scores or no descending
            tail to fit
        """
        if len(xcorr_scores) < MIN_SCORES_FOR_EVALUE:
            return None

        histogram = np.zeros(HISTO_SIZE, dtype=int)
        for score in xcorr_scores:
            bin_idx = min(max(int(score * 10.0 + 0.5), 0), HISTO_SIZE - 1)
            histogram[bin_idx] += 1

        nonzero = np.flatnonzero(histogram[:HISTO_SIZE - 1])
        max_corr = int(nonzero[-1]) if len(nonzero) else 0
        if max_corr < 10:
            return None

        # regress up to the first gap in the tail
        next_corr = max_corr
        found_first_nonzero = False
        for i in range(max_corr):
            if histogram[i] == 0 and found_first_nonzero and i >= 10:
                if i + 1 >= max_corr or histogram[i + 1] == 0:
                    next_corr = max(i - 1, 0)
                    break
            if histogram[i] != 0:
                found_first_nonzero = True

        survival = np.cumsum(histogram[:next_corr + 1][::-1])[::-1].astype(float)
        with np.errstate(divide='ignore'):
            log_survival = np.where(survival > 0, np.log10(survival), 0.0)

        start_corr = max(next_corr - 5, 0)
        slope = 0.0
        mean_x = mean_y = 0.0
        while start_corr >= 0 and next_corr > start_corr + 2:
            xs = np.array([i for i in range(start_corr, next_corr + 1) if histogram[i] > 0], dtype=float)
            if len(xs) == 0:
                break
            ys = log_survival[xs.astype(int)]
            mean_x, mean_y = xs.mean(), ys.mean()
            sum_xx = ((xs - mean_x) ** 2).sum()
            slope = ((xs - mean_x) * (ys - mean_y)).sum() / sum_xx if sum_xx > 0 else 0.0
            if slope < 0.0:
                break
            start_corr -= 1

        if slope >= 0.0:
            return None
        return float(slope), float(mean_y - slope * mean_x)

    @staticmethod
    def e_value_from_fit(fit: Optional[Tuple[float, float]], top_score: float) -> float:
        if fit is None:
            return 1.0
        slope, intercept = fit
        expect_value = 10.0 ** (slope * 10.0 * top_score + intercept)
        return float(min(max(expect_value, 1e-10), 999.0))

    def calculate_e_value(self, xcorr_scores: List[float], top_score: float) -> float:
        """E-value of top_score projected from the fit to xcorr_scores."""
        return self.e_value_from_fit(self.fit_e_value(xcorr_scores), top_score)

    def log_bonferroni_pvalues(self, xcorr_scores: List[float],
                               xcorrs: Optional[List[float]] = None) -> List[float]:
        """
        -log10 of the Bonferroni-corrected p-value of each XCorr in xcorrs
        (default: every score) within the distribution of all candidates
        scored for the spectrum.  The distribution is fitted once.
        """
        xcorrs = xcorr_scores if xcorrs is None else xcorrs
        num_scores = len(xcorr_scores)
        if num_scores == 0:
            return [0.0] * len(xcorrs)

        fit = self.fit_e_value(xcorr_scores)
        log_pvalues = []
        for xcorr in xcorrs:
            p_single = min(self.e_value_from_fit(fit, xcorr) / num_scores, 1.0)
            if p_single >= 1.0:
                log_pvalues.append(0.0)
                continue
            p_bonf = -math.expm1(num_scores * math.log1p(-p_single))
            log_pvalues.append(-math.log10(max(p_bonf, 1e-300)))
        return log_pvalues

    def log_bonferroni_pvalue(self, xcorr_scores: List[float], xcorr: float) -> float:
        return self.log_bonferroni_pvalues(xcorr_scores, [xcorr])[0]
