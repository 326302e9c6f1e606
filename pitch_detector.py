"""
tunebench - Pitch Detector
Two independent fundamental-frequency estimators and their reconciliation.

- Autocorrelation: normalized absolute-difference correlation over lags
  (the classic browser-tuner estimator), gated by RMS and a 0.7 acceptance level.
- Cepstrum: Hann window -> FFT -> log(1 + scale*power) -> inverse FFT of the
  mirrored log spectrum -> peak in the quefrency band of the target range.
- Reconciliation: sharp disagreement (ratio > 1.5) trusts the cepstrum,
  otherwise the two estimates are averaged.

Silence or a weak signal is never an error: the estimators return
PitchEstimate(valid=False) and callers branch on it every frame.
"""

from dataclasses import dataclass
from typing import Optional

import numpy as np
from numpy.lib.stride_tricks import sliding_window_view

from config import AnalysisConfig, PitchMethod
from fft_engine import forward_spectrum, inverse_transform
from frames import SampleFrame
from logging_utils import log_event


@dataclass(frozen=True)
class PitchEstimate:
    """Fundamental frequency estimate; valid=False means no pitch / silence"""
    frequency: float
    valid: bool

    @classmethod
    def none(cls) -> "PitchEstimate":
        return cls(0.0, False)

    @classmethod
    def of(cls, frequency: float) -> "PitchEstimate":
        if not np.isfinite(frequency) or frequency <= 0:
            return cls.none()
        return cls(float(frequency), True)


def _rms(x: np.ndarray) -> float:
    if len(x) == 0:
        return 0.0
    return float(np.sqrt(np.mean(x * x)))


def _parabolic_offset(y0: float, y1: float, y2: float) -> float:
    """Vertex offset of the parabola through three equally spaced points, in [-0.5, 0.5]."""
    denom = 2.0 * (2.0 * y1 - y2 - y0)
    if denom == 0 or not np.isfinite(denom):
        return 0.0
    return max(-0.5, min(0.5, (y2 - y0) / denom))


def autocorrelation_pitch(
    samples,
    sample_rate: int,
    min_freq: float = 50.0,
    max_freq: float = 2000.0,
    silence_threshold: float = 0.01,
    correlation_threshold: float = 0.7,
    octave_tolerance: float = 0.1,
    refine: bool = True,
) -> PitchEstimate:
    """Estimate pitch from the normalized absolute-difference correlation.

    corr(lag) = 1 - sum(|x[i] - x[i+lag]|, i < N/2) / (N/2) for lag between
    sample_rate/max_freq and sample_rate/min_freq. Only lags whose correlation
    clears `correlation_threshold` qualify. A periodic signal correlates just as
    well at whole multiples of its period, so the shortest local peak within
    `octave_tolerance` of the best correlation (relative to the correlation
    range) is taken as the period.
    """
    x = np.asarray(samples, dtype=np.float64)
    n = len(x)
    if n < 4 or _rms(x) < silence_threshold:
        return PitchEstimate.none()

    half = n // 2
    shortest = int(np.floor(sample_rate / max_freq))
    longest = int(np.ceil(sample_rate / min_freq))
    # One extra lag on each side so a peak at the band edge still has two neighbours
    lo = max(1, shortest - 1)
    hi = min(longest + 1, n - half)
    if hi - lo < 2:
        return PitchEstimate.none()

    windows = sliding_window_view(x, half)[lo:hi + 1]
    corr = 1.0 - np.abs(windows - x[:half]).sum(axis=1) / half

    first = max(1, shortest - lo)
    last = min(len(corr) - 2, longest - lo)
    if first > last:
        return PitchEstimate.none()
    band = corr[first:last + 1]

    best_corr = float(np.max(band))
    if best_corr <= correlation_threshold:
        return PitchEstimate.none()

    floor = float(np.min(band))
    accept_level = best_corr - octave_tolerance * (best_corr - floor)
    best_idx = first + int(np.argmax(band))
    for i in range(first, last + 1):
        if corr[i] <= correlation_threshold or corr[i] < accept_level:
            continue
        if corr[i] >= corr[i - 1] and corr[i] >= corr[i + 1]:
            best_idx = i
            break

    lag = float(lo + best_idx)
    if refine:
        lag += _parabolic_offset(corr[best_idx - 1], corr[best_idx], corr[best_idx + 1])

    return PitchEstimate.of(sample_rate / lag)


def real_cepstrum(samples, fft_size: int, sample_rate: int, scale: float = 1000.0) -> np.ndarray:
    """Real cepstrum of a Hann-windowed frame (length fft_size)."""
    spectrum = forward_spectrum(samples, fft_size, sample_rate)
    half = fft_size // 2
    power = spectrum.re[:half + 1] ** 2 + spectrum.im[:half + 1] ** 2
    log_spectrum = np.log1p(scale * power)

    # Mirror so the buffer is the even, real spectrum of a real signal
    ceps_re = np.zeros(fft_size)
    ceps_im = np.zeros(fft_size)
    ceps_re[:half + 1] = log_spectrum
    ceps_re[half + 1:] = log_spectrum[1:half][::-1]
    inverse_transform(ceps_re, ceps_im)
    return ceps_re


def cepstrum_pitch(
    samples,
    sample_rate: int,
    fft_size: int = 4096,
    min_freq: float = 50.0,
    max_freq: float = 2000.0,
    scale: float = 1000.0,
    silence_threshold: float = 0.01,
    refine: bool = True,
) -> PitchEstimate:
    """Estimate pitch from the strongest real-cepstrum peak in the quefrency band."""
    x = np.asarray(samples, dtype=np.float64)
    if len(x) < 4 or _rms(x) < silence_threshold:
        return PitchEstimate.none()

    cepstrum = real_cepstrum(x, fft_size, sample_rate, scale)
    q_min = max(2, int(sample_rate / max_freq))
    q_max = min(int(np.ceil(sample_rate / min_freq)), fft_size // 2 - 1)
    if q_min >= q_max:
        return PitchEstimate.none()

    band = cepstrum[q_min:q_max + 1]
    peak = q_min + int(np.argmax(band))
    quefrency = float(peak)
    if refine and q_min < peak < q_max:
        quefrency += _parabolic_offset(cepstrum[peak - 1], cepstrum[peak], cepstrum[peak + 1])

    return PitchEstimate.of(sample_rate / quefrency)


def reconcile(autocorrelation: PitchEstimate, cepstrum: PitchEstimate,
              disagreement_ratio: float = 1.5) -> PitchEstimate:
    """Merge the two estimates: cepstrum wins sharp disagreements, else average."""
    if not autocorrelation.valid and not cepstrum.valid:
        return PitchEstimate.none()
    if not cepstrum.valid:
        return autocorrelation
    if not autocorrelation.valid:
        return cepstrum

    f1, f2 = autocorrelation.frequency, cepstrum.frequency
    ratio = max(f1, f2) / min(f1, f2)
    if ratio > disagreement_ratio:
        log_event("DEBUG", "Pitch", "Estimators disagree, using cepstrum",
                  autocorrelation=f"{f1:.2f}", cepstrum=f"{f2:.2f}", ratio=f"{ratio:.2f}")
        return cepstrum
    return PitchEstimate((f1 + f2) / 2.0, True)


class PitchDetector:
    """Runs the configured estimator(s) on SampleFrames."""

    def __init__(self, config: Optional[AnalysisConfig] = None,
                 method: Optional[PitchMethod] = None):
        self.config = config or AnalysisConfig()
        self.method = PitchMethod(method if method is not None else self.config.pitch_method)

    def autocorrelation(self, frame: SampleFrame) -> PitchEstimate:
        cfg = self.config
        return autocorrelation_pitch(
            frame.samples, frame.sample_rate,
            min_freq=cfg.min_frequency,
            max_freq=cfg.max_frequency,
            silence_threshold=cfg.silence_threshold,
            correlation_threshold=cfg.correlation_threshold,
            octave_tolerance=cfg.octave_tolerance,
            refine=cfg.parabolic_refinement,
        )

    def cepstrum(self, frame: SampleFrame) -> PitchEstimate:
        cfg = self.config
        return cepstrum_pitch(
            frame.samples, frame.sample_rate,
            fft_size=cfg.fft_size,
            min_freq=cfg.min_frequency,
            max_freq=cfg.max_frequency,
            scale=cfg.cepstrum_scale,
            silence_threshold=cfg.silence_threshold,
            refine=cfg.parabolic_refinement,
        )

    def detect(self, frame: SampleFrame) -> PitchEstimate:
        if self.method == PitchMethod.AUTOCORRELATION:
            return self.autocorrelation(frame)
        if self.method == PitchMethod.CEPSTRUM:
            return self.cepstrum(frame)

        first = self.autocorrelation(frame)
        if not first.valid and frame.rms() < self.config.silence_threshold:
            # Silence: skip the FFT work
            return first
        return reconcile(first, self.cepstrum(frame), self.config.disagreement_ratio)
