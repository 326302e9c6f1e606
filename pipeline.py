"""
tunebench - Analysis pipeline
Capture -> analysis -> render as three threads joined by bounded channels.

Every task watches one CancellationToken; cancelling it makes each task
return at its next channel wait, so stop() never waits on a blocked queue.
Capture frames are real-time data: when analysis falls behind, the oldest
queued frame is dropped rather than blocking the audio side.
"""

import queue
import threading
from dataclasses import dataclass
from typing import Callable, Iterable, Optional

import numpy as np
from scipy.signal import butter, sosfilt, sosfilt_zi

from config import Config
from frames import SampleFrame
from harmonic_analyzer import HarmonicAnalyzer, HarmonicReport
from logging_utils import log_event
from tuner import TunerReading, TunerTracker

_END = object()


class CancellationToken:
    """Shared stop flag for a group of tasks."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self) -> None:
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self._event.wait(timeout)


class Channel:
    """Bounded queue between two tasks."""

    def __init__(self, maxsize: int, drop_oldest: bool = False, poll_timeout: float = 0.1):
        self._queue: queue.Queue = queue.Queue(maxsize=max(1, maxsize))
        self.drop_oldest = drop_oldest
        self.poll_timeout = poll_timeout
        self.dropped = 0

    def __len__(self) -> int:
        return self._queue.qsize()

    def _discard_oldest(self) -> None:
        try:
            self._queue.get_nowait()
            self.dropped += 1
        except queue.Empty:
            pass

    def put(self, item, token: CancellationToken) -> bool:
        """Queue an item; False if the token was cancelled first."""
        while not token.cancelled:
            if self.drop_oldest and self._queue.full():
                self._discard_oldest()
            try:
                self._queue.put(item, timeout=self.poll_timeout)
                return True
            except queue.Full:
                continue
        return False

    def get(self, token: CancellationToken):
        """Next item, or None once the token is cancelled."""
        while not token.cancelled:
            try:
                return self._queue.get(timeout=self.poll_timeout)
            except queue.Empty:
                continue
        return None

    def close(self, token: CancellationToken) -> None:
        """Tell the consumer no more items will come."""
        while not token.cancelled:
            try:
                self._queue.put(_END, timeout=self.poll_timeout)
                return
            except queue.Full:
                if self.drop_oldest:
                    self._discard_oldest()


class FrameAssembler:
    """Turns arbitrary-size capture blocks into overlapping fixed-size frames."""

    def __init__(self, window: int, hop: int, sample_rate: int):
        if hop <= 0 or hop > window:
            raise ValueError(f"hop must be in (0, window], got {hop}")
        self.window = window
        self.hop = hop
        self.sample_rate = sample_rate
        self._buffer = np.zeros(0, dtype=np.float64)

    def feed(self, block) -> list:
        self._buffer = np.concatenate([self._buffer, np.asarray(block, dtype=np.float64).reshape(-1)])
        frames = []
        while len(self._buffer) >= self.window:
            frames.append(SampleFrame(self._buffer[:self.window], self.sample_rate))
            self._buffer = self._buffer[self.hop:]
        return frames

    def reset(self) -> None:
        self._buffer = np.zeros(0, dtype=np.float64)


class HighpassFilter:
    """4th-order Butterworth high-pass with state carried across frames."""

    def __init__(self, cutoff_hz: float, sample_rate: int, order: int = 4):
        nyquist = sample_rate / 2
        normalized = max(0.001, min(0.99, cutoff_hz / nyquist))
        self.sos = butter(order, normalized, btype='highpass', output='sos')
        self._zi = None

    def apply(self, frame: SampleFrame) -> SampleFrame:
        samples = frame.samples
        if len(samples) == 0:
            return frame
        if self._zi is None:
            self._zi = sosfilt_zi(self.sos) * samples[0]
        filtered, self._zi = sosfilt(self.sos, samples, zi=self._zi)
        return SampleFrame(filtered, frame.sample_rate)


@dataclass(frozen=True)
class AnalysisResult:
    sequence: int
    reading: TunerReading
    report: Optional[HarmonicReport] = None


class FrameAnalyzer:
    """One detection per frame feeds both the tuner and the harmonic report."""

    def __init__(self, config: Config, with_harmonics: bool = True):
        self.tracker = TunerTracker(config.tuner, config.analysis)
        self.harmonics = HarmonicAnalyzer(config.analysis) if with_harmonics else None
        self._sequence = 0

    def __call__(self, frame: SampleFrame) -> AnalysisResult:
        estimate = self.tracker.detector.detect(frame)
        reading = self.tracker.update(estimate)
        report = None
        if self.harmonics is not None and estimate.valid:
            report = self.harmonics.report(frame, estimate)
        result = AnalysisResult(sequence=self._sequence, reading=reading, report=report)
        self._sequence += 1
        return result


class _Task(threading.Thread):
    def __init__(self, name: str, token: CancellationToken):
        super().__init__(name=name, daemon=True)
        self.token = token
        self.error: Optional[BaseException] = None

    def run(self) -> None:
        try:
            self._run()
        except Exception as e:
            self.error = e
            log_event("ERROR", "Pipeline", "Task failed, cancelling pipeline", task=self.name, error=e)
            self.token.cancel()

    def _run(self) -> None:
        raise NotImplementedError


class CaptureTask(_Task):
    """Pulls frames from a source iterable into the frame channel."""

    def __init__(self, source: Iterable, out: Channel, token: CancellationToken,
                 highpass: Optional[HighpassFilter] = None):
        super().__init__("capture", token)
        self.source = source
        self.out = out
        self.highpass = highpass
        self.frames = 0

    def _run(self) -> None:
        try:
            for frame in self.source:
                if self.token.cancelled:
                    break
                if self.highpass is not None:
                    frame = self.highpass.apply(frame)
                if not self.out.put(frame, self.token):
                    break
                self.frames += 1
        finally:
            close = getattr(self.source, 'close', None)
            if callable(close):
                close()
        self.out.close(self.token)


class AnalysisTask(_Task):
    def __init__(self, analyzer: Callable[[SampleFrame], object], inbox: Channel,
                 out: Channel, token: CancellationToken):
        super().__init__("analysis", token)
        self.analyzer = analyzer
        self.inbox = inbox
        self.out = out

    def _run(self) -> None:
        while True:
            frame = self.inbox.get(self.token)
            if frame is None or frame is _END:
                break
            if not self.out.put(self.analyzer(frame), self.token):
                break
        self.out.close(self.token)


class RenderTask(_Task):
    def __init__(self, callback: Callable[[object], None], inbox: Channel, token: CancellationToken):
        super().__init__("render", token)
        self.callback = callback
        self.inbox = inbox
        self.rendered = 0

    def _run(self) -> None:
        while True:
            result = self.inbox.get(self.token)
            if result is None or result is _END:
                break
            self.callback(result)
            self.rendered += 1


class AnalysisPipeline:
    """Wires capture, analysis and render tasks for one input."""

    def __init__(self, config: Config, source: Iterable,
                 on_result: Callable[[object], None],
                 analyzer: Optional[Callable[[SampleFrame], object]] = None):
        self.config = config
        pipe = config.pipeline
        self.token = CancellationToken()
        self.frames = Channel(pipe.frame_channel_size, drop_oldest=True, poll_timeout=pipe.poll_timeout)
        self.results = Channel(pipe.result_channel_size, poll_timeout=pipe.poll_timeout)

        highpass = None
        if config.analysis.highpass_filter_hz > 0:
            highpass = HighpassFilter(config.analysis.highpass_filter_hz, config.analysis.sample_rate)

        self.capture = CaptureTask(source, self.frames, self.token, highpass)
        self.analysis = AnalysisTask(analyzer or FrameAnalyzer(config), self.frames, self.results, self.token)
        self.render = RenderTask(on_result, self.results, self.token)
        self._tasks = (self.capture, self.analysis, self.render)

    @property
    def errors(self) -> list:
        return [task.error for task in self._tasks if task.error is not None]

    def start(self) -> None:
        for task in reversed(self._tasks):
            task.start()
        log_event("INFO", "Pipeline", "Started")

    def join(self, timeout: Optional[float] = None) -> None:
        for task in self._tasks:
            task.join(timeout)

    def stop(self, timeout: float = 1.0) -> None:
        self.token.cancel()
        close = getattr(self.capture.source, 'close', None)
        if callable(close):
            close()
        self.join(timeout)
        log_event("INFO", "Pipeline", "Stopped", frames=self.capture.frames,
                  rendered=self.render.rendered, dropped=self.frames.dropped)
