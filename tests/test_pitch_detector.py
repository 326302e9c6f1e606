import unittest
from unittest import mock

import numpy as np

from config import AnalysisConfig, PitchMethod
from frames import SampleFrame
from pitch_detector import (
    PitchDetector,
    PitchEstimate,
    autocorrelation_pitch,
    cepstrum_pitch,
    reconcile,
)

SR = 44100
N = 4096


def sine(freq, amplitude=0.5, n=N, sr=SR):
    t = np.arange(n) / sr
    return amplitude * np.sin(2 * np.pi * freq * t)


def rich_tone(freq, harmonics=8, amplitude=0.3, n=N, sr=SR):
    t = np.arange(n) / sr
    tone = sum(np.sin(2 * np.pi * k * freq * t) / k for k in range(1, harmonics + 1))
    return amplitude * tone


class TestAutocorrelation(unittest.TestCase):
    def test_sine_440(self):
        estimate = autocorrelation_pitch(sine(440.0), SR)
        self.assertTrue(estimate.valid)
        self.assertAlmostEqual(estimate.frequency, 440.0, delta=3.0)

    def test_sine_880_not_reported_an_octave_low(self):
        estimate = autocorrelation_pitch(sine(880.0), SR)
        self.assertTrue(estimate.valid)
        self.assertAlmostEqual(estimate.frequency, 880.0, delta=880.0 * 0.01)

    def test_sine_sweep_within_one_percent(self):
        freqs = list(np.linspace(80.0, 2000.0, 25)) + [82.0, 1940.0, 1960.0, 1980.0, 1995.0]
        for n in (2048, 4096):
            for freq in freqs:
                with self.subTest(n=n, freq=freq):
                    estimate = autocorrelation_pitch(sine(freq, n=n), SR)
                    self.assertTrue(estimate.valid)
                    self.assertAlmostEqual(estimate.frequency, freq, delta=freq * 0.01)

    def test_peak_at_shortest_lag_is_refined(self):
        # 1980 Hz sits between lags 22 and 23, right at the top of the band
        estimate = autocorrelation_pitch(sine(1980.0), SR, refine=True)
        unrefined = autocorrelation_pitch(sine(1980.0), SR, refine=False)
        self.assertLess(abs(estimate.frequency - 1980.0), abs(unrefined.frequency - 1980.0))

    def test_harmonic_tone(self):
        estimate = autocorrelation_pitch(rich_tone(220.0), SR)
        self.assertTrue(estimate.valid)
        self.assertAlmostEqual(estimate.frequency, 220.0, delta=2.0)

    def test_silence_is_invalid(self):
        self.assertFalse(autocorrelation_pitch(np.zeros(N), SR).valid)

    def test_below_rms_gate_is_invalid(self):
        self.assertFalse(autocorrelation_pitch(sine(440.0, amplitude=0.005), SR).valid)

    def test_tiny_frame_is_invalid(self):
        self.assertFalse(autocorrelation_pitch(np.ones(3), SR).valid)


class TestCepstrum(unittest.TestCase):
    def test_harmonic_tone(self):
        estimate = cepstrum_pitch(rich_tone(220.0), SR, fft_size=N)
        self.assertTrue(estimate.valid)
        self.assertAlmostEqual(estimate.frequency, 220.0, delta=220.0 * 0.03)

    def test_silence_is_invalid(self):
        self.assertFalse(cepstrum_pitch(np.zeros(N), SR, fft_size=N).valid)


class TestReconcile(unittest.TestCase):
    def test_both_invalid(self):
        self.assertFalse(reconcile(PitchEstimate.none(), PitchEstimate.none()).valid)

    def test_one_valid_wins(self):
        self.assertEqual(reconcile(PitchEstimate.of(220.0), PitchEstimate.none()).frequency, 220.0)
        self.assertEqual(reconcile(PitchEstimate.none(), PitchEstimate.of(330.0)).frequency, 330.0)

    def test_agreement_is_averaged(self):
        merged = reconcile(PitchEstimate.of(440.0), PitchEstimate.of(444.0))
        self.assertTrue(merged.valid)
        self.assertAlmostEqual(merged.frequency, 442.0)

    def test_disagreement_trusts_cepstrum(self):
        merged = reconcile(PitchEstimate.of(880.0), PitchEstimate.of(440.0))
        self.assertAlmostEqual(merged.frequency, 440.0)

    def test_ratio_exactly_at_threshold_is_averaged(self):
        merged = reconcile(PitchEstimate.of(300.0), PitchEstimate.of(200.0))
        self.assertAlmostEqual(merged.frequency, 250.0)


class TestPitchEstimate(unittest.TestCase):
    def test_non_positive_or_nan_is_invalid(self):
        self.assertFalse(PitchEstimate.of(0.0).valid)
        self.assertFalse(PitchEstimate.of(-5.0).valid)
        self.assertFalse(PitchEstimate.of(float('nan')).valid)


class TestPitchDetector(unittest.TestCase):
    def test_combined_detects_harmonic_tone(self):
        detector = PitchDetector(AnalysisConfig())
        estimate = detector.detect(SampleFrame(rich_tone(220.0), SR))
        self.assertTrue(estimate.valid)
        self.assertAlmostEqual(estimate.frequency, 220.0, delta=220.0 * 0.03)

    def test_method_override(self):
        detector = PitchDetector(AnalysisConfig(), method=PitchMethod.AUTOCORRELATION)
        self.assertEqual(detector.method, PitchMethod.AUTOCORRELATION)
        estimate = detector.detect(SampleFrame(sine(440.0), SR))
        self.assertAlmostEqual(estimate.frequency, 440.0, delta=3.0)

    def test_silence_skips_cepstrum(self):
        detector = PitchDetector(AnalysisConfig())
        frame = SampleFrame(np.zeros(N), SR)
        with mock.patch.object(detector, "cepstrum") as cepstrum:
            self.assertFalse(detector.detect(frame).valid)
        cepstrum.assert_not_called()


if __name__ == "__main__":
    unittest.main()
