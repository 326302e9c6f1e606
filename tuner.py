"""
tunebench - Tuner Tracking Loop
Per-frame pitch -> nearest note -> cents, exponentially smoothed, with a
rolling-window stability classifier.
"""

from collections import deque
from dataclasses import dataclass
from typing import Optional

import numpy as np

from config import AnalysisConfig, StableDisplay, TunerConfig
from frames import SampleFrame
from frequency_utils import cents_offset, note_name
from logging_utils import log_event
from pitch_detector import PitchDetector, PitchEstimate


@dataclass(frozen=True)
class TunerReading:
    has_pitch: bool
    frequency: float = 0.0
    midi: int = 0
    note: str = '--'
    cents: float = 0.0            # Raw deviation of this frame
    smoothed_cents: float = 0.0   # Exponentially smoothed deviation
    display_cents: float = 0.0    # What the needle should show (depends on StableDisplay)
    stable: bool = False

    @classmethod
    def no_pitch(cls) -> "TunerReading":
        return cls(has_pitch=False)


class TunerTracker:
    """Continuous tuner state for one input."""

    def __init__(self, config: Optional[TunerConfig] = None,
                 analysis: Optional[AnalysisConfig] = None,
                 detector: Optional[PitchDetector] = None):
        self.config = config or TunerConfig()
        self.analysis = analysis or AnalysisConfig()
        self.detector = detector or PitchDetector(self.analysis, method=self.config.pitch_method)
        self._window: deque[float] = deque(maxlen=self.config.stability_window_size)
        self._smoothed: Optional[float] = None
        self._display = 0.0
        self._stable = False

    @property
    def stable(self) -> bool:
        return self._stable

    def reset(self) -> None:
        self._window.clear()
        self._smoothed = None
        self._display = 0.0
        self._stable = False

    def _is_stable(self) -> bool:
        if len(self._window) < self._window.maxlen:
            return False
        return float(np.std(self._window)) < self.config.stability_threshold

    def process(self, frame: SampleFrame) -> TunerReading:
        """Analyze one captured frame."""
        return self.update(self.detector.detect(frame))

    def update(self, estimate: PitchEstimate) -> TunerReading:
        """Fold one pitch estimate into the tracked state.

        An invalid estimate yields a no-pitch reading and leaves the smoothing
        history and stability window untouched.
        """
        if not estimate.valid:
            return TunerReading.no_pitch()

        cfg = self.config
        midi, cents = cents_offset(estimate.frequency, cfg.reference_frequency)
        weight = cfg.smoothing_weight
        if self._smoothed is None:
            self._smoothed = cents
        else:
            self._smoothed = (1.0 - weight) * self._smoothed + weight * cents
        self._window.append(self._smoothed)

        stable = self._is_stable()
        if stable != self._stable:
            log_event("INFO", "Tuner", "Stable" if stable else "Unsettled",
                      note=note_name(midi, cfg.note_naming_system),
                      cents=f"{self._smoothed:+.1f}")
        self._stable = stable

        if cfg.stable_display == StableDisplay.FREEZE_AT_ZERO and stable:
            self._display = (1.0 - weight) * self._display
        else:
            self._display = self._smoothed

        return TunerReading(
            has_pitch=True,
            frequency=estimate.frequency,
            midi=midi,
            note=note_name(midi, cfg.note_naming_system),
            cents=cents,
            smoothed_cents=self._smoothed,
            display_cents=self._display,
            stable=stable,
        )
