"""
tunebench - Harmonic Analyzer
Per-harmonic magnitudes of a frame at a known fundamental, and the
distortion/balance metrics derived from them.
"""

import math
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from typing import Optional

import numpy as np

from config import AnalysisConfig
from errors import InvalidFundamentalError
from fft_engine import forward_spectrum
from frames import SampleFrame
from logging_utils import log_event
from pitch_detector import PitchEstimate

EPSILON = 1e-10
BALANCE_HARMONICS = 5       # Harmonics after the fundamental scored for balance
BALANCE_TOLERANCE_DB = 20.0


@dataclass(frozen=True)
class Harmonic:
    order: int          # 1 = fundamental
    frequency: float    # Hz
    magnitude: float    # sqrt(summed power) / (2W + 1)
    decibels: float     # 20 * log10(magnitude + eps)

    @property
    def power(self) -> float:
        return self.magnitude * self.magnitude


class HarmonicSet(Sequence):
    """Immutable, order-ascending run of harmonics starting at the fundamental."""

    __slots__ = ('_harmonics',)

    def __init__(self, harmonics: Sequence[Harmonic] = ()):
        items = tuple(harmonics)
        for expected, harmonic in enumerate(items, start=1):
            if harmonic.order != expected:
                raise ValueError(
                    f"Harmonic orders must run 1, 2, 3...; got {harmonic.order} at position {expected}")
        self._harmonics = items

    def __getitem__(self, index):
        return self._harmonics[index]

    def __len__(self) -> int:
        return len(self._harmonics)

    def __iter__(self) -> Iterator[Harmonic]:
        return iter(self._harmonics)

    def __repr__(self) -> str:
        return f"HarmonicSet({list(self._harmonics)!r})"

    @property
    def fundamental(self) -> Optional[Harmonic]:
        return self._harmonics[0] if self._harmonics else None

    def frequencies(self) -> list[float]:
        return [h.frequency for h in self._harmonics]

    def powers(self) -> np.ndarray:
        return np.array([h.power for h in self._harmonics], dtype=np.float64)


def _fundamental_hz(fundamental) -> float:
    if isinstance(fundamental, PitchEstimate):
        if not fundamental.valid:
            raise InvalidFundamentalError("Harmonic analysis needs a valid pitch estimate")
        fundamental = fundamental.frequency
    f0 = float(fundamental)
    if not math.isfinite(f0) or f0 <= 0:
        raise InvalidFundamentalError(f"Fundamental must be a positive frequency, got {fundamental!r}")
    return f0


def analyze_harmonics(
    frame: SampleFrame,
    fundamental,
    fft_size: int = 4096,
    harmonic_count: int = 10,
    bin_window: int = 3,
) -> HarmonicSet:
    """Measure harmonics 1..K of `fundamental` (Hz or a valid PitchEstimate).

    Each harmonic's power is summed over +/- `bin_window` bins around
    round(k * f0 * N / sample_rate) to absorb window smear; harmonics at or
    above Nyquist end the set.
    """
    f0 = _fundamental_hz(fundamental)
    spectrum = forward_spectrum(frame.samples, fft_size, frame.sample_rate)
    power = spectrum.power()
    nyquist_bin = fft_size // 2
    width = 2 * bin_window + 1

    harmonics = []
    for order in range(1, harmonic_count + 1):
        target = order * f0
        center = int(round(target * fft_size / frame.sample_rate))
        if center >= nyquist_bin:
            break
        lo = max(0, center - bin_window)
        hi = min(nyquist_bin, center + bin_window + 1)
        summed = float(np.sum(power[lo:hi]))
        magnitude = math.sqrt(summed) / width
        harmonics.append(Harmonic(
            order=order,
            frequency=target,
            magnitude=magnitude,
            decibels=20.0 * math.log10(magnitude + EPSILON),
        ))

    return HarmonicSet(harmonics)


def total_harmonic_distortion(harmonics: HarmonicSet) -> float:
    """sqrt(sum of harmonic powers k >= 2 / fundamental power)."""
    if len(harmonics) < 2:
        return 0.0
    powers = harmonics.powers()
    return math.sqrt(float(np.sum(powers[1:])) / (powers[0] + EPSILON))


def harmonic_balance(harmonics: HarmonicSet) -> float:
    """Score in [0, 1] for how closely harmonics 2..6 follow a -6 dB/octave roll-off.

    Each harmonic contributes max(0, 1 - |deviation| / 20 dB); the score is the mean.
    """
    if len(harmonics) < 3:
        return 0.0
    reference_db = harmonics[0].decibels
    scored = harmonics[1:1 + BALANCE_HARMONICS]
    total = 0.0
    for harmonic in scored:
        expected_db = reference_db - 20.0 * math.log10(harmonic.order)
        deviation = harmonic.decibels - expected_db
        total += max(0.0, 1.0 - abs(deviation) / BALANCE_TOLERANCE_DB)
    return total / len(scored)


def odd_even_ratio(harmonics: HarmonicSet) -> float:
    """Power in odd overtones (3, 5, ...) over power in even ones (2, 4, ...)."""
    if len(harmonics) < 3:
        return 1.0
    odd = sum(h.power for h in harmonics if h.order > 1 and h.order % 2 == 1)
    even = sum(h.power for h in harmonics if h.order % 2 == 0)
    return odd / (even + EPSILON)


@dataclass(frozen=True)
class HarmonicReport:
    fundamental: float
    harmonics: HarmonicSet
    thd: float
    balance: float
    odd_even: float


def summarize(harmonics: HarmonicSet) -> HarmonicReport:
    fundamental = harmonics.fundamental
    return HarmonicReport(
        fundamental=fundamental.frequency if fundamental else 0.0,
        harmonics=harmonics,
        thd=total_harmonic_distortion(harmonics),
        balance=harmonic_balance(harmonics),
        odd_even=odd_even_ratio(harmonics),
    )


class HarmonicAnalyzer:
    """Harmonic analysis with the analysis settings baked in."""

    def __init__(self, config: Optional[AnalysisConfig] = None):
        self.config = config or AnalysisConfig()

    def analyze(self, frame: SampleFrame, fundamental) -> HarmonicSet:
        return analyze_harmonics(
            frame, fundamental,
            fft_size=self.config.fft_size,
            harmonic_count=self.config.harmonic_count,
            bin_window=self.config.harmonic_bin_window,
        )

    def report(self, frame: SampleFrame, fundamental) -> HarmonicReport:
        report = summarize(self.analyze(frame, fundamental))
        log_event("DEBUG", "Harmonics", "Analyzed",
                  f0=f"{report.fundamental:.2f}", count=len(report.harmonics),
                  thd=f"{report.thd:.4f}", balance=f"{report.balance:.2f}",
                  odd_even=f"{report.odd_even:.2f}")
        return report
