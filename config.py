# tunebench Configuration
# All default values and constants

from dataclasses import dataclass, field, is_dataclass
from enum import IntEnum

from errors import InvalidConfigurationError
from logging_utils import log_event


CURRENT_CONFIG_VERSION = 1

NOTE_NAMING_SYSTEMS = ('en', 'solfege', 'de', 'jp')


class StableDisplay(IntEnum):
    """What the tuner shows once a reading has settled"""
    RAW_CENTS = 1          # Keep tracking the measured cents
    FREEZE_AT_ZERO = 2     # Relax the tracked value toward 0 while stable


class PitchMethod(IntEnum):
    AUTOCORRELATION = 1
    CEPSTRUM = 2
    COMBINED = 3           # Both estimators, reconciled


@dataclass
class AnalysisConfig:
    """Pitch detection and harmonic analysis parameters"""
    pitch_method: PitchMethod = PitchMethod.COMBINED
    sample_rate: int = 44100
    fft_size: int = 4096              # Power of two, must be >= analysis window
    hop_size: int = 1024              # Advance between analysis windows (samples)
    harmonic_count: int = 10          # K harmonics per HarmonicSet
    harmonic_bin_window: int = 3      # +/- bins summed around each harmonic
    min_frequency: float = 50.0       # Lowest detectable fundamental (Hz)
    max_frequency: float = 2000.0     # Highest detectable fundamental (Hz)
    silence_threshold: float = 0.01   # RMS below this = no pitch
    correlation_threshold: float = 0.7  # Autocorrelation acceptance level
    cepstrum_scale: float = 1000.0    # log(1 + scale * power)
    octave_tolerance: float = 0.1     # Earlier correlation peaks within this fraction of the range win
    disagreement_ratio: float = 1.5   # Above this the cepstrum estimate wins
    parabolic_refinement: bool = True  # Sub-bin peak interpolation
    highpass_filter_hz: int = 0       # Capture-stage high-pass (0=disabled)


@dataclass
class TunerConfig:
    """Tuner tracking loop settings"""
    pitch_method: PitchMethod = PitchMethod.AUTOCORRELATION
    reference_frequency: float = 442.0  # A4 reference (Hz)
    note_naming_system: str = 'en'      # en / solfege / de / jp
    smoothing_weight: float = 0.3       # Weight of the new reading (0.0-1.0)
    stability_window_size: int = 30     # Smoothed readings kept for the stability check
    stability_threshold: float = 5.0    # Std-dev below this (cents) = stable
    stable_display: StableDisplay = StableDisplay.RAW_CENTS


@dataclass
class MetronomeConfig:
    """Lookahead metronome settings"""
    bpm: float = 120.0
    time_signature: str = '4/4'       # Numerator = beats per measure
    lookahead_window: float = 0.1     # Seconds scheduled ahead of the clock
    scheduling_tick_interval: float = 0.025  # Polling cadence (seconds)
    start_offset: float = 0.05        # First beat lands this far after start()
    # Click synthesis
    main_click_hz: float = 1000.0     # Downbeat click
    sub_click_hz: float = 600.0       # Other beats
    main_click_gain: float = 1.0
    sub_click_gain: float = 0.7
    click_duration: float = 0.1       # Seconds
    click_decay: float = 20.0         # exp(-decay * t) envelope


@dataclass
class IntervalConfig:
    """Multi-source relation analysis"""
    match_tolerance: float = 0.1      # |ratio - table value| must be below this
    overlap_bins: int = 120           # Log-spaced bins for harmonic overlap
    overlap_min_hz: float = 20.0
    overlap_max_hz: float = 20000.0


@dataclass
class PipelineConfig:
    """Capture -> analysis -> render task wiring"""
    frame_channel_size: int = 4       # Bounded queue between capture and analysis
    result_channel_size: int = 8      # Bounded queue between analysis and render
    poll_timeout: float = 0.1         # Seconds a task waits on a channel before re-checking cancellation
    device_index: int | None = None   # sounddevice input, None = system default
    channels: int = 1


@dataclass
class Config:
    """Master configuration"""
    version: int = 1                  # Schema version for persisted configs
    analysis: AnalysisConfig = field(default_factory=AnalysisConfig)
    tuner: TunerConfig = field(default_factory=TunerConfig)
    metronome: MetronomeConfig = field(default_factory=MetronomeConfig)
    intervals: IntervalConfig = field(default_factory=IntervalConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)

    log_level: str = "INFO"           # Logging level (DEBUG/INFO/WARNING/ERROR)


def is_power_of_two(n: int) -> bool:
    return isinstance(n, int) and n > 0 and (n & (n - 1)) == 0


def parse_time_signature(signature: str) -> tuple[int, int]:
    """Split '3/4' into (3, 4). Raises InvalidConfigurationError when malformed."""
    try:
        numerator, denominator = (int(part) for part in str(signature).split('/'))
    except ValueError:
        raise InvalidConfigurationError(f"Malformed time signature: {signature!r}") from None
    if numerator <= 0 or denominator <= 0:
        raise InvalidConfigurationError(f"Malformed time signature: {signature!r}")
    return numerator, denominator


def validate_config(config: Config) -> None:
    """Reject settings the analysis or scheduling code cannot run with."""
    analysis = config.analysis
    if not is_power_of_two(analysis.fft_size):
        raise InvalidConfigurationError(f"fft_size must be a power of two, got {analysis.fft_size}")
    if analysis.hop_size <= 0 or analysis.hop_size > analysis.fft_size:
        raise InvalidConfigurationError(
            f"hop_size must be in (0, fft_size], got {analysis.hop_size}")
    if analysis.sample_rate <= 0:
        raise InvalidConfigurationError(f"sample_rate must be positive, got {analysis.sample_rate}")
    if not 0 < analysis.min_frequency < analysis.max_frequency:
        raise InvalidConfigurationError(
            f"Need 0 < min_frequency < max_frequency, got "
            f"{analysis.min_frequency}..{analysis.max_frequency}")
    if analysis.max_frequency >= analysis.sample_rate / 2:
        raise InvalidConfigurationError("max_frequency must stay below Nyquist")
    if analysis.harmonic_count < 1:
        raise InvalidConfigurationError("harmonic_count must be at least 1")
    if analysis.harmonic_bin_window < 0:
        raise InvalidConfigurationError("harmonic_bin_window cannot be negative")
    if not 0.0 <= analysis.octave_tolerance < 1.0:
        raise InvalidConfigurationError("octave_tolerance must be in [0, 1)")

    tuner = config.tuner
    if tuner.reference_frequency <= 0:
        raise InvalidConfigurationError("reference_frequency must be positive")
    if tuner.note_naming_system not in NOTE_NAMING_SYSTEMS:
        raise InvalidConfigurationError(f"Unknown note naming system: {tuner.note_naming_system!r}")
    if not 0.0 < tuner.smoothing_weight <= 1.0:
        raise InvalidConfigurationError("smoothing_weight must be in (0, 1]")
    if tuner.stability_window_size < 2:
        raise InvalidConfigurationError("stability_window_size must be at least 2")

    metronome = config.metronome
    if metronome.bpm <= 0:
        raise InvalidConfigurationError(f"bpm must be positive, got {metronome.bpm}")
    parse_time_signature(metronome.time_signature)
    if metronome.lookahead_window <= 0 or metronome.scheduling_tick_interval <= 0:
        raise InvalidConfigurationError("lookahead_window and scheduling_tick_interval must be positive")
    if metronome.scheduling_tick_interval >= metronome.lookahead_window:
        # A tick slower than the lookahead lets beats slip past unscheduled
        raise InvalidConfigurationError("scheduling_tick_interval must be shorter than lookahead_window")

    if config.intervals.overlap_bins < 1:
        raise InvalidConfigurationError("overlap_bins must be at least 1")
    if config.pipeline.frame_channel_size < 1 or config.pipeline.result_channel_size < 1:
        raise InvalidConfigurationError("Channel sizes must be at least 1")


def apply_dict_to_dataclass(target, data) -> None:
    """Recursively apply values from a dict onto a dataclass instance.
    Unknown keys are ignored; IntEnum fields are coerced when possible."""
    if not isinstance(data, dict):
        return

    for key, value in data.items():
        if not hasattr(target, key):
            continue

        current = getattr(target, key)

        if is_dataclass(current) and isinstance(value, dict):
            apply_dict_to_dataclass(current, value)
            continue

        if isinstance(current, IntEnum):
            try:
                setattr(target, key, current.__class__(value))
            except ValueError:
                log_event("WARN", "Config", "Could not convert value, keeping default",
                          key=key, type=current.__class__.__name__)
            continue

        setattr(target, key, value)


def migrate_config(config: Config, loaded_version) -> None:
    """Upgrade older config structures to the current schema.
    Fills fields that older files stored as null and bumps version."""
    try:
        version = int(loaded_version) if loaded_version is not None else 0
    except (TypeError, ValueError):
        version = 0

    if version < 1:
        if getattr(config.tuner, 'reference_frequency', None) is None:
            config.tuner.reference_frequency = 442.0
        if getattr(config.tuner, 'note_naming_system', None) is None:
            config.tuner.note_naming_system = 'en'
        if getattr(config.metronome, 'time_signature', None) is None:
            config.metronome.time_signature = '4/4'

    if getattr(config, 'log_level', None) is None:
        config.log_level = "INFO"

    # Always clamp smoothing into its usable range
    try:
        weight = float(getattr(config.tuner, 'smoothing_weight', 0.3))
    except (TypeError, ValueError):
        weight = 0.3
    config.tuner.smoothing_weight = max(0.01, min(1.0, weight))

    try:
        bpm = float(getattr(config.metronome, 'bpm', 120.0))
    except (TypeError, ValueError):
        bpm = 120.0
    config.metronome.bpm = max(1.0, min(400.0, bpm))

    config.version = CURRENT_CONFIG_VERSION


# Default config instance
DEFAULT_CONFIG = Config()
