"""
tunebench - Audio I/O
Microphone capture and click playback on top of sounddevice.

sounddevice loads PortAudio at import time, so it is imported when a stream
is opened rather than at module load; analysis code and tests never need it.
"""

import queue
import threading
import time
from typing import Callable, Optional

import numpy as np

from config import Config, MetronomeConfig
from logging_utils import log_event
from metronome import BeatEvent, click_for
from pipeline import FrameAssembler


def list_devices() -> list:
    """(index, name, input channels, output channels, default sample rate) per device."""
    import sounddevice as sd

    devices = []
    for i, d in enumerate(sd.query_devices()):
        devices.append((i, d['name'], d['max_input_channels'], d['max_output_channels'],
                        d['default_samplerate']))
    return devices


class MicrophoneSource:
    """Iterable of overlapping SampleFrames captured from an input device.

    Iteration ends once close() is called.
    """

    def __init__(self, config: Config, block_size: int = 1024, max_blocks: int = 64):
        analysis = config.analysis
        self.sample_rate = analysis.sample_rate
        self.channels = config.pipeline.channels
        self.device = config.pipeline.device_index
        self.block_size = block_size
        self.poll_timeout = config.pipeline.poll_timeout
        self.assembler = FrameAssembler(analysis.fft_size, analysis.hop_size, self.sample_rate)
        self._blocks: queue.Queue = queue.Queue(maxsize=max_blocks)
        self._closed = threading.Event()
        self._stream = None
        self.overruns = 0

    def _callback(self, indata, frames, time_info, status):
        if status:
            self.overruns += 1
        mono = indata.mean(axis=1) if indata.shape[1] > 1 else indata[:, 0]
        try:
            self._blocks.put_nowait(mono.copy())
        except queue.Full:
            self.overruns += 1

    def open(self) -> None:
        import sounddevice as sd

        if self._stream is not None:
            return
        self._stream = sd.InputStream(
            device=self.device,
            channels=self.channels,
            samplerate=self.sample_rate,
            blocksize=self.block_size,
            dtype='float32',
            callback=self._callback,
        )
        self._stream.start()
        log_event("INFO", "Capture", "Input stream started", device=self.device,
                  sample_rate=self.sample_rate, channels=self.channels)

    def close(self) -> None:
        if self._closed.is_set():
            return
        self._closed.set()
        if self._stream is not None:
            self._stream.stop()
            self._stream.close()
            self._stream = None
            log_event("INFO", "Capture", "Input stream closed", overruns=self.overruns)

    def __iter__(self):
        self.open()
        while not self._closed.is_set():
            try:
                block = self._blocks.get(timeout=self.poll_timeout)
            except queue.Empty:
                continue
            yield from self.assembler.feed(block)


class ClickMixer:
    """Sample-accurate mix of scheduled click buffers into an output stream."""

    def __init__(self):
        self._lock = threading.Lock()
        self._voices: list = []    # [start_sample, buffer]
        self.position = 0          # Next output sample index

    def schedule(self, buffer: np.ndarray, at_sample: int) -> None:
        with self._lock:
            self._voices.append([max(int(at_sample), self.position), np.asarray(buffer, dtype=np.float32)])

    def render(self, frames: int) -> np.ndarray:
        out = np.zeros(frames, dtype=np.float32)
        with self._lock:
            start = self.position
            end = start + frames
            remaining = []
            for voice in self._voices:
                begin, buf = voice
                if begin >= end:
                    remaining.append(voice)
                    continue
                offset = begin - start
                take = min(len(buf), frames - offset)
                out[offset:offset + take] += buf[:take]
                if take < len(buf):
                    remaining.append([end, buf[take:]])
            self._voices = remaining
            self.position = end
        np.clip(out, -1.0, 1.0, out=out)
        return out


class ClickPlayer:
    """Plays metronome beats at their scheduled clock time.

    on_beat() is suitable as MetronomeScheduler's on_beat callback; the
    scheduler clock and the stream are tied together at start().
    """

    def __init__(self, config: Optional[MetronomeConfig] = None, sample_rate: int = 44100,
                 clock: Callable[[], float] = time.monotonic, device: Optional[int] = None):
        self.config = config or MetronomeConfig()
        self.sample_rate = sample_rate
        self.clock = clock
        self.device = device
        self.mixer = ClickMixer()
        self._anchor_time = clock()
        self._anchor_sample = 0
        self._stream = None

    def sample_for(self, scheduled_time: float) -> int:
        return self._anchor_sample + int(round((scheduled_time - self._anchor_time) * self.sample_rate))

    def on_beat(self, event: BeatEvent) -> None:
        self.mixer.schedule(click_for(event, self.config, self.sample_rate),
                            self.sample_for(event.scheduled_time))

    def _callback(self, outdata, frames, time_info, status):
        outdata[:, 0] = self.mixer.render(frames)

    def start(self) -> None:
        import sounddevice as sd

        if self._stream is not None:
            return
        self._anchor_time = self.clock()
        self._anchor_sample = self.mixer.position
        self._stream = sd.OutputStream(
            device=self.device,
            samplerate=self.sample_rate,
            channels=1,
            dtype='float32',
            callback=self._callback,
        )
        self._stream.start()
        log_event("INFO", "Playback", "Click stream started", sample_rate=self.sample_rate)

    def stop(self) -> None:
        if self._stream is None:
            return
        self._stream.stop()
        self._stream.close()
        self._stream = None
        log_event("INFO", "Playback", "Click stream stopped")
