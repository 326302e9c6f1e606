"""
tunebench - Input slots
Each audio source the user compares lives in one InputSlot record that owns
its frame, capture state and latest analysis. Slots are keyed by index.
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Optional

from config import Config
from frames import SampleFrame
from harmonic_analyzer import HarmonicAnalyzer, HarmonicReport
from interval_analyzer import IntervalAnalyzer, RelationAnalysis
from logging_utils import log_event
from pitch_detector import PitchDetector, PitchEstimate


class CaptureState(IntEnum):
    EMPTY = 1
    CAPTURING = 2
    READY = 3


@dataclass
class InputSlot:
    index: int
    frame: Optional[SampleFrame] = None
    capture_state: CaptureState = CaptureState.EMPTY
    pitch: Optional[PitchEstimate] = None
    report: Optional[HarmonicReport] = None

    @property
    def has_pitch(self) -> bool:
        return self.pitch is not None and self.pitch.valid

    def clear_results(self) -> None:
        self.pitch = None
        self.report = None


@dataclass(frozen=True)
class SessionAnalysis:
    slots: tuple              # InputSlots that were analyzed, in index order
    relations: RelationAnalysis


class SlotCollection:
    """Ordered collection of InputSlots with monotonically assigned indices."""

    def __init__(self, config: Optional[Config] = None, initial_slots: int = 2):
        self.config = config or Config()
        self._slots: dict[int, InputSlot] = {}
        self._next_index = 0
        for _ in range(initial_slots):
            self.add_slot()

    def __len__(self) -> int:
        return len(self._slots)

    def __iter__(self):
        return iter(self._slots[i] for i in sorted(self._slots))

    def __getitem__(self, index: int) -> InputSlot:
        return self._slots[index]

    def add_slot(self) -> InputSlot:
        slot = InputSlot(index=self._next_index)
        self._slots[slot.index] = slot
        self._next_index += 1
        return slot

    def remove_slot(self, index: int) -> None:
        del self._slots[index]

    def begin_capture(self, index: int) -> None:
        slot = self._slots[index]
        slot.capture_state = CaptureState.CAPTURING
        slot.clear_results()

    def load(self, index: int, frame: SampleFrame) -> InputSlot:
        """Attach captured audio to a slot; stale results are discarded."""
        slot = self._slots[index]
        slot.frame = frame
        slot.capture_state = CaptureState.READY
        slot.clear_results()
        log_event("INFO", "Slots", "Frame loaded", slot=index,
                  samples=len(frame), sample_rate=frame.sample_rate)
        return slot

    def ready_slots(self) -> list:
        return [slot for slot in self if slot.capture_state == CaptureState.READY and slot.frame is not None]

    def analyze_all(self) -> SessionAnalysis:
        """Pitch + harmonics for every ready slot, then cross-source relations."""
        analysis = self.config.analysis
        detector = PitchDetector(analysis)
        harmonics = HarmonicAnalyzer(analysis)
        relations = IntervalAnalyzer(self.config.intervals)

        analyzed = []
        for slot in self.ready_slots():
            window = SampleFrame(slot.frame.samples[:analysis.fft_size], slot.frame.sample_rate)
            slot.pitch = detector.detect(window)
            slot.report = harmonics.report(window, slot.pitch) if slot.pitch.valid else None
            analyzed.append(slot)
            log_event("DEBUG", "Slots", "Slot analyzed", slot=slot.index,
                      valid=slot.pitch.valid, f0=f"{slot.pitch.frequency:.2f}")

        pitched = [slot for slot in analyzed if slot.report is not None]
        relation_result = relations.analyze(
            [slot.pitch.frequency for slot in pitched],
            [slot.report.harmonics for slot in pitched],
            indices=[slot.index for slot in pitched],
        )
        return SessionAnalysis(slots=tuple(analyzed), relations=relation_result)
