import unittest
from unittest import mock

from config import (
    Config,
    CURRENT_CONFIG_VERSION,
    PitchMethod,
    StableDisplay,
    apply_dict_to_dataclass,
    migrate_config,
    parse_time_signature,
    validate_config,
)
from errors import InvalidConfigurationError


class TestConfigMigration(unittest.TestCase):
    def test_missing_version_sets_defaults_and_bumps(self):
        cfg = Config()
        data = {
            # version intentionally omitted to simulate legacy file
            "tuner": {},
            "metronome": {},
        }

        apply_dict_to_dataclass(cfg, data)
        migrate_config(cfg, data.get("version"))

        self.assertEqual(cfg.version, CURRENT_CONFIG_VERSION)
        self.assertEqual(cfg.tuner.reference_frequency, 442.0)
        self.assertEqual(cfg.metronome.time_signature, '4/4')

    def test_none_values_are_sanitized(self):
        cfg = Config()
        data = {
            "version": 0,
            "tuner": {"reference_frequency": None, "note_naming_system": None},
            "metronome": {"time_signature": None},
            "log_level": None,
        }

        apply_dict_to_dataclass(cfg, data)
        migrate_config(cfg, data.get("version"))

        self.assertEqual(cfg.tuner.reference_frequency, 442.0)
        self.assertEqual(cfg.tuner.note_naming_system, 'en')
        self.assertEqual(cfg.metronome.time_signature, '4/4')
        self.assertEqual(cfg.log_level, "INFO")

    def test_preserves_custom_values(self):
        cfg = Config()
        data = {
            "version": 1,
            "tuner": {"reference_frequency": 415.0, "stable_display": 2},
            "metronome": {"bpm": 90},
            "analysis": {"pitch_method": 1},
        }

        apply_dict_to_dataclass(cfg, data)
        migrate_config(cfg, data.get("version"))

        self.assertEqual(cfg.tuner.reference_frequency, 415.0)
        self.assertEqual(cfg.tuner.stable_display, StableDisplay.FREEZE_AT_ZERO)
        self.assertEqual(cfg.analysis.pitch_method, PitchMethod.AUTOCORRELATION)
        self.assertEqual(cfg.metronome.bpm, 90)

    def test_out_of_range_values_are_clamped(self):
        cfg = Config()
        apply_dict_to_dataclass(cfg, {"tuner": {"smoothing_weight": 5}, "metronome": {"bpm": 9000}})
        migrate_config(cfg, 1)
        self.assertEqual(cfg.tuner.smoothing_weight, 1.0)
        self.assertEqual(cfg.metronome.bpm, 400.0)

    def test_bad_enum_value_keeps_default_and_warns(self):
        cfg = Config()
        with mock.patch("config.log_event") as log:
            apply_dict_to_dataclass(cfg, {"analysis": {"pitch_method": 99}})
        self.assertEqual(cfg.analysis.pitch_method, PitchMethod.COMBINED)
        self.assertEqual(log.call_args[0][:2], ("WARN", "Config"))

    def test_unknown_keys_are_ignored(self):
        cfg = Config()
        apply_dict_to_dataclass(cfg, {"visualizer": {"enabled": 1}, "tuner": {"nope": 1}})
        self.assertFalse(hasattr(cfg, "visualizer"))
        self.assertFalse(hasattr(cfg.tuner, "nope"))


class TestValidation(unittest.TestCase):
    def test_defaults_are_valid(self):
        validate_config(Config())

    def assertRejected(self, mutate):
        cfg = Config()
        mutate(cfg)
        with self.assertRaises(InvalidConfigurationError):
            validate_config(cfg)

    def test_rejects_bad_settings(self):
        self.assertRejected(lambda c: setattr(c.analysis, "fft_size", 1000))
        self.assertRejected(lambda c: setattr(c.analysis, "hop_size", 0))
        self.assertRejected(lambda c: setattr(c.analysis, "hop_size", 8192))
        self.assertRejected(lambda c: setattr(c.analysis, "min_frequency", 3000.0))
        self.assertRejected(lambda c: setattr(c.analysis, "max_frequency", 30000.0))
        self.assertRejected(lambda c: setattr(c.analysis, "octave_tolerance", 1.0))
        self.assertRejected(lambda c: setattr(c.tuner, "note_naming_system", "fr"))
        self.assertRejected(lambda c: setattr(c.tuner, "smoothing_weight", 0.0))
        self.assertRejected(lambda c: setattr(c.tuner, "stability_window_size", 1))
        self.assertRejected(lambda c: setattr(c.metronome, "bpm", 0))
        self.assertRejected(lambda c: setattr(c.metronome, "time_signature", "four"))
        self.assertRejected(lambda c: setattr(c.metronome, "scheduling_tick_interval", 0.2))
        self.assertRejected(lambda c: setattr(c.pipeline, "frame_channel_size", 0))

    def test_time_signature(self):
        self.assertEqual(parse_time_signature('3/4'), (3, 4))
        self.assertEqual(parse_time_signature(' 7 / 8 '), (7, 8))
        for bad in ('0/4', '4', 'a/b', '4/0'):
            with self.assertRaises(InvalidConfigurationError):
                parse_time_signature(bad)


if __name__ == "__main__":
    unittest.main()
