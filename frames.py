"""
tunebench - Sample frames
One captured block of mono audio plus the rate it was captured at.
"""

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True, eq=False)
class SampleFrame:
    """Immutable block of normalized samples (-1.0..1.0)"""
    samples: np.ndarray
    sample_rate: int

    def __post_init__(self):
        data = np.array(self.samples, dtype=np.float64, copy=True).reshape(-1)
        data.setflags(write=False)
        object.__setattr__(self, 'samples', data)
        if self.sample_rate <= 0:
            raise ValueError(f"sample_rate must be positive, got {self.sample_rate}")

    def __len__(self) -> int:
        return len(self.samples)

    @property
    def duration(self) -> float:
        return len(self.samples) / self.sample_rate

    def rms(self) -> float:
        if len(self.samples) == 0:
            return 0.0
        return float(np.sqrt(np.mean(self.samples * self.samples)))

    @classmethod
    def from_interleaved(cls, data: np.ndarray, channels: int, sample_rate: int) -> "SampleFrame":
        """Build a mono frame from interleaved or (frames, channels) data."""
        block = np.asarray(data, dtype=np.float64).reshape(-1, max(1, channels))
        if block.shape[1] > 1:
            mono = np.mean(block, axis=1)
        else:
            mono = block[:, 0]
        return cls(mono, sample_rate)
