"""
tunebench - Metronome Scheduler
Lookahead scheduling: a coarse polling tick (~25 ms, jittery) enqueues beats
whose timestamps are computed exactly from the tempo, and playback uses those
timestamps rather than the moment the tick happened to run.
"""

import threading
import time
from collections import deque
from dataclasses import dataclass
from enum import IntEnum
from typing import Callable, Optional

import numpy as np

from config import MetronomeConfig, parse_time_signature
from errors import InvalidConfigurationError, SchedulerInvariantError
from logging_utils import log_event


class MetronomeStatus(IntEnum):
    STOPPED = 1
    RUNNING = 2
    PAUSED = 3


@dataclass(frozen=True)
class BeatEvent:
    """One scheduled click"""
    scheduled_time: float    # Audio-clock seconds the click should sound at
    beat_index: int          # 1..beats_per_measure
    is_downbeat: bool        # True on beat 1
    tick: int = 0            # 0-based tick counter when the beat was generated


class MetronomeScheduler:
    """Single-writer beat scheduler.

    `tick()` is the only producer and `dispatch()` the only consumer of the
    pending queue; both run under one lock so `stop()`/`pause()` from another
    thread can never let an already-cleared event through.
    """

    def __init__(self, config: Optional[MetronomeConfig] = None,
                 clock: Callable[[], float] = time.monotonic,
                 on_beat: Optional[Callable[[BeatEvent], None]] = None):
        self.config = config or MetronomeConfig()
        self.clock = clock
        self.on_beat = on_beat
        self._lock = threading.RLock()

        if self.config.bpm <= 0:
            raise InvalidConfigurationError(f"bpm must be positive, got {self.config.bpm}")
        self.bpm = float(self.config.bpm)
        self.beats_per_measure, _ = parse_time_signature(self.config.time_signature)
        self.lookahead_window = self.config.lookahead_window
        self.tick_interval = self.config.scheduling_tick_interval

        self.status = MetronomeStatus.STOPPED
        self.seconds_per_beat = 60.0 / self.bpm
        self.next_note_time = 0.0
        self.tick_counter = 0
        self.current_beat = 1
        self._pending: deque[BeatEvent] = deque()
        self._last_scheduled = float('-inf')

    # --- State -----------------------------------------------------------

    @property
    def running(self) -> bool:
        return self.status == MetronomeStatus.RUNNING

    @property
    def pending_events(self) -> tuple:
        with self._lock:
            return tuple(self._pending)

    def start(self) -> None:
        """Stopped/Paused -> Running. The first beat lands start_offset after now."""
        with self._lock:
            if self.status == MetronomeStatus.RUNNING:
                return
            resumed = self.status == MetronomeStatus.PAUSED
            self.tick_counter = 0
            self.current_beat = 1
            self.seconds_per_beat = 60.0 / self.bpm
            self.next_note_time = self.clock() + self.config.start_offset
            self._pending.clear()
            self._last_scheduled = float('-inf')
            self.status = MetronomeStatus.RUNNING
        log_event("INFO", "Metronome", "Resumed" if resumed else "Started",
                  bpm=f"{self.bpm:.1f}", beats_per_measure=self.beats_per_measure)

    def pause(self) -> None:
        with self._lock:
            self._pending.clear()
            if self.status == MetronomeStatus.RUNNING:
                self.status = MetronomeStatus.PAUSED
                log_event("INFO", "Metronome", "Paused", tick=self.tick_counter)

    def stop(self) -> None:
        with self._lock:
            self._pending.clear()
            was_stopped = self.status == MetronomeStatus.STOPPED
            self.status = MetronomeStatus.STOPPED
            self.tick_counter = 0
            self.current_beat = 1
            self._last_scheduled = float('-inf')
        if not was_stopped:
            log_event("INFO", "Metronome", "Stopped")

    # --- Tempo / meter -----------------------------------------------------

    def set_bpm(self, bpm: float) -> None:
        """New tempo applies to beats generated after this call."""
        if bpm <= 0:
            raise InvalidConfigurationError(f"bpm must be positive, got {bpm}")
        with self._lock:
            self.bpm = float(bpm)
            self.seconds_per_beat = 60.0 / self.bpm
        log_event("INFO", "Metronome", "Tempo changed", bpm=f"{bpm:.1f}")

    def set_beats_per_measure(self, beats: int) -> None:
        if beats < 1:
            raise InvalidConfigurationError(f"beats_per_measure must be >= 1, got {beats}")
        with self._lock:
            self.beats_per_measure = int(beats)
        log_event("INFO", "Metronome", "Meter changed", beats_per_measure=beats)

    def set_time_signature(self, signature: str) -> None:
        beats, _ = parse_time_signature(signature)
        self.set_beats_per_measure(beats)

    # --- Scheduling --------------------------------------------------------

    def _enqueue(self, scheduled_time: float) -> None:
        if scheduled_time < self._last_scheduled:
            raise SchedulerInvariantError(
                f"Beat at {scheduled_time:.6f}s would precede queued beat at {self._last_scheduled:.6f}s")
        position = self.tick_counter % self.beats_per_measure
        self._pending.append(BeatEvent(
            scheduled_time=scheduled_time,
            beat_index=position + 1,
            is_downbeat=position == 0,
            tick=self.tick_counter,
        ))
        self._last_scheduled = scheduled_time
        self.current_beat = position + 1

    def _skip_stale_beats(self, now: float) -> None:
        """Jump the beat grid past beats the polling loop was too late to schedule."""
        behind = now - self.tick_interval - self.next_note_time
        if behind <= 0:
            return
        missed = int(behind // self.seconds_per_beat) + 1
        self.next_note_time += missed * self.seconds_per_beat
        self.tick_counter += missed
        log_event("WARN", "Metronome", "Scheduling loop stalled, skipped beats",
                  missed=missed, behind_ms=f"{behind * 1000:.1f}")

    def schedule(self) -> int:
        """Enqueue every beat due before now + lookahead. Returns how many were added."""
        with self._lock:
            if self.status != MetronomeStatus.RUNNING:
                return 0
            if self.lookahead_window <= 0:
                raise SchedulerInvariantError(f"Lookahead must be positive, got {self.lookahead_window}")

            now = self.clock()
            self._skip_stale_beats(now)
            horizon = now + self.lookahead_window
            added = 0
            while self.next_note_time < horizon:
                self._enqueue(self.next_note_time)
                self.next_note_time += self.seconds_per_beat
                self.tick_counter += 1
                added += 1
            return added

    def dispatch(self) -> list:
        """Hand every due beat to on_beat, in time order, with its own timestamp."""
        dispatched = []
        with self._lock:
            now = self.clock()
            while self._pending and self.status == MetronomeStatus.RUNNING:
                if self._pending[0].scheduled_time > now:
                    break
                event = self._pending.popleft()
                dispatched.append(event)
                if self.on_beat is not None:
                    self.on_beat(event)
        return dispatched

    def tick(self) -> list:
        """One polling step: schedule ahead, then dispatch what is due."""
        with self._lock:
            self.schedule()
            return self.dispatch()


class MetronomeRunner:
    """Drives MetronomeScheduler.tick() from a daemon thread at the tick interval."""

    def __init__(self, scheduler: MetronomeScheduler):
        self.scheduler = scheduler
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.error: Optional[BaseException] = None

    @property
    def alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        if self.alive:
            return
        self._stop_event.clear()
        self.error = None
        self.scheduler.start()
        self._thread = threading.Thread(target=self._loop, name="metronome-tick", daemon=True)
        self._thread.start()

    def stop(self, timeout: float = 1.0) -> None:
        self._stop_event.set()
        self.scheduler.stop()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def _loop(self) -> None:
        interval = self.scheduler.tick_interval
        while not self._stop_event.is_set():
            try:
                self.scheduler.tick()
            except SchedulerInvariantError as e:
                log_event("ERROR", "Metronome", "Scheduler invariant violated, stopping", error=e)
                self.error = e
                self.scheduler.stop()
                return
            self._stop_event.wait(interval)


def synthesize_click(frequency: float, sample_rate: int, duration: float = 0.1,
                     decay: float = 20.0, gain: float = 1.0) -> np.ndarray:
    """Decaying sine burst: gain * sin(2*pi*f*t) * exp(-decay*t)."""
    t = np.arange(int(sample_rate * duration)) / sample_rate
    return (gain * np.sin(2 * np.pi * frequency * t) * np.exp(-decay * t)).astype(np.float32)


def click_for(event: BeatEvent, config: MetronomeConfig, sample_rate: int) -> np.ndarray:
    """Main (downbeat) or sub click buffer for a beat."""
    if event.is_downbeat:
        return synthesize_click(config.main_click_hz, sample_rate, config.click_duration,
                                config.click_decay, config.main_click_gain)
    return synthesize_click(config.sub_click_hz, sample_rate, config.click_duration,
                            config.click_decay, config.sub_click_gain)
