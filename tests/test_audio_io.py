import sys
import unittest
from unittest import mock

import numpy as np

from audio_io import ClickMixer, ClickPlayer, MicrophoneSource
from config import Config, MetronomeConfig
from metronome import BeatEvent, synthesize_click


class FakeClock:
    def __init__(self, now=0.0):
        self.now = now

    def __call__(self):
        return self.now


class FakeStream:
    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.started = False
        self.closed = False

    def start(self):
        self.started = True

    def stop(self):
        self.started = False

    def close(self):
        self.closed = True


class TestClickMixer(unittest.TestCase):
    def test_click_lands_at_its_sample(self):
        mixer = ClickMixer()
        mixer.schedule(np.ones(4), at_sample=6)
        out = mixer.render(8)
        np.testing.assert_array_equal(out, [0, 0, 0, 0, 0, 0, 1, 1])
        out = mixer.render(8)
        np.testing.assert_array_equal(out[:3], [1, 1, 0])
        self.assertEqual(mixer.position, 16)

    def test_late_click_plays_immediately(self):
        mixer = ClickMixer()
        mixer.render(10)
        mixer.schedule(np.ones(2), at_sample=3)
        np.testing.assert_array_equal(mixer.render(4), [1, 1, 0, 0])

    def test_overlapping_clicks_are_summed_and_clipped(self):
        mixer = ClickMixer()
        mixer.schedule(np.full(4, 0.4), at_sample=0)
        mixer.schedule(np.full(4, 0.4), at_sample=2)
        mixer.schedule(np.full(4, 0.4), at_sample=2)
        out = mixer.render(6)
        np.testing.assert_allclose(out, [0.4, 0.4, 1.0, 1.0, 0.8, 0.8], atol=1e-6)


class TestClickPlayer(unittest.TestCase):
    def test_beat_is_placed_by_timestamp(self):
        clock = FakeClock(10.0)
        player = ClickPlayer(MetronomeConfig(), sample_rate=8000, clock=clock)
        self.assertEqual(player.sample_for(10.5), 4000)
        player.on_beat(BeatEvent(scheduled_time=10.05, beat_index=1, is_downbeat=True))
        out = player.mixer.render(1200)
        self.assertTrue(np.all(out[:400] == 0))
        np.testing.assert_allclose(out[400:1200], synthesize_click(1000.0, 8000), atol=1e-6)

    def test_start_and_stop_stream(self):
        fake_sd = mock.Mock()
        fake_sd.OutputStream.side_effect = lambda **kw: FakeStream(**kw)
        with mock.patch.dict(sys.modules, {"sounddevice": fake_sd}):
            player = ClickPlayer(sample_rate=48000)
            player.start()
            stream = player._stream
            self.assertTrue(stream.started)
            self.assertEqual(stream.kwargs["samplerate"], 48000)
            outdata = np.zeros((16, 1), dtype=np.float32)
            stream.kwargs["callback"](outdata, 16, None, None)
            player.stop()
        self.assertTrue(stream.closed)
        self.assertIsNone(player._stream)


class TestMicrophoneSource(unittest.TestCase):
    def test_callback_downmixes_to_mono(self):
        cfg = Config()
        cfg.analysis.fft_size = 8
        cfg.analysis.hop_size = 4
        cfg.pipeline.channels = 2
        source = MicrophoneSource(cfg, block_size=4)
        source._callback(np.array([[1.0, 0.0]] * 4, dtype=np.float32), 4, None, None)
        block = source._blocks.get_nowait()
        np.testing.assert_allclose(block, np.full(4, 0.5))

    def test_iteration_opens_stream_and_close_ends_it(self):
        cfg = Config()
        cfg.analysis.fft_size = 8
        cfg.analysis.hop_size = 8
        cfg.pipeline.poll_timeout = 0.01
        fake_sd = mock.Mock()
        fake_sd.InputStream.side_effect = lambda **kw: FakeStream(**kw)

        with mock.patch.dict(sys.modules, {"sounddevice": fake_sd}):
            source = MicrophoneSource(cfg, block_size=8)
            frames = iter(source)
            source._blocks.put(np.arange(8, dtype=np.float32))
            first = next(frames)
            np.testing.assert_array_equal(first.samples, np.arange(8))
            stream = source._stream
            self.assertTrue(stream.started)
            source.close()
            self.assertEqual(list(frames), [])
        self.assertTrue(stream.closed)


if __name__ == "__main__":
    unittest.main()
