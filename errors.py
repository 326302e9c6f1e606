"""
tunebench - Error taxonomy

Only configuration mistakes and scheduler programming errors are raised.
Silence and weak signals are reported through PitchEstimate.valid instead.
"""


class TunebenchError(Exception):
    """Base class for every error raised by tunebench."""


class InvalidConfigurationError(TunebenchError, ValueError):
    """A setting cannot be used (bad FFT size, window too large, bad tempo...)."""


class InvalidSizeError(InvalidConfigurationError):
    """FFT buffers are not a power of two or differ in length."""

    def __init__(self, size: int, other: int | None = None):
        self.size = size
        self.other = other
        if other is not None and other != size:
            message = f"FFT buffers differ in length: re={size} im={other}"
        else:
            message = f"FFT size must be a power of two, got {size}"
        super().__init__(message)


class InvalidFundamentalError(TunebenchError, ValueError):
    """Harmonic analysis was asked to run without a usable fundamental."""


class SchedulerInvariantError(TunebenchError, RuntimeError):
    """The metronome queue would go out of order or look behind the clock.

    Raised out of the tick that detected it; the scheduler never retries.
    """
