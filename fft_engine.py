"""
tunebench - FFT Engine
In-place radix-2 decimation-in-time FFT over paired real/imaginary arrays.

The transform works on two float numpy arrays of the same power-of-two length
and overwrites them with the spectrum. Each butterfly stage is applied to all
blocks of the stage at once, so the cost stays O(N log N) without a Python
loop per butterfly.
"""

import functools
from dataclasses import dataclass

import numpy as np
from scipy.signal import get_window

from config import is_power_of_two
from errors import InvalidConfigurationError, InvalidSizeError


@functools.lru_cache(maxsize=32)
def _bit_reversal_permutation(n: int) -> np.ndarray:
    bits = n.bit_length() - 1
    indices = np.arange(n)
    reversed_indices = np.zeros(n, dtype=np.intp)
    for b in range(bits):
        reversed_indices |= ((indices >> b) & 1) << (bits - 1 - b)
    reversed_indices.setflags(write=False)
    return reversed_indices


@functools.lru_cache(maxsize=32)
def _stage_twiddles(half: int) -> tuple[np.ndarray, np.ndarray]:
    """cos/sin of -pi*j/half for j in [0, half)"""
    theta = -np.pi * np.arange(half) / half
    w_re = np.cos(theta)
    w_im = np.sin(theta)
    w_re.setflags(write=False)
    w_im.setflags(write=False)
    return w_re, w_im


def _check_buffers(re: np.ndarray, im: np.ndarray) -> int:
    if not isinstance(re, np.ndarray) or not isinstance(im, np.ndarray):
        raise TypeError("transform() works in place on numpy arrays")
    if re.ndim != 1 or im.ndim != 1:
        raise ValueError("transform() expects one-dimensional buffers")
    n = len(re)
    if len(im) != n:
        raise InvalidSizeError(n, len(im))
    if not is_power_of_two(n):
        raise InvalidSizeError(n)
    if not (np.issubdtype(re.dtype, np.floating) and np.issubdtype(im.dtype, np.floating)):
        raise TypeError("transform() needs floating point buffers")
    return n


def transform(re: np.ndarray, im: np.ndarray) -> None:
    """Forward FFT of re + j*im, written back into re and im."""
    n = _check_buffers(re, im)
    if n == 1:
        return

    work_re = re if re.flags.c_contiguous else np.ascontiguousarray(re)
    work_im = im if im.flags.c_contiguous else np.ascontiguousarray(im)

    perm = _bit_reversal_permutation(n)
    work_re[:] = work_re[perm]
    work_im[:] = work_im[perm]

    half = 1
    while half < n:
        span = half << 1
        w_re, w_im = _stage_twiddles(half)
        blocks_re = work_re.reshape(-1, span)
        blocks_im = work_im.reshape(-1, span)
        top_re, bottom_re = blocks_re[:, :half], blocks_re[:, half:]
        top_im, bottom_im = blocks_im[:, :half], blocks_im[:, half:]

        t_re = w_re * bottom_re - w_im * bottom_im
        t_im = w_re * bottom_im + w_im * bottom_re

        bottom_re[...] = top_re - t_re
        bottom_im[...] = top_im - t_im
        top_re += t_re
        top_im += t_im
        half = span

    if work_re is not re:
        re[:] = work_re
    if work_im is not im:
        im[:] = work_im


def inverse_transform(re: np.ndarray, im: np.ndarray) -> None:
    """Inverse FFT in place: conjugate, forward transform, conjugate, scale by 1/N."""
    n = _check_buffers(re, im)
    np.negative(im, out=im)
    transform(re, im)
    np.negative(im, out=im)
    re /= n
    im /= n


@functools.lru_cache(maxsize=16)
def _cached_hann(n: int) -> np.ndarray:
    window = get_window('hann', n, fftbins=False).astype(np.float64)
    window.setflags(write=False)
    return window


def hann_window(n: int) -> np.ndarray:
    """Symmetric Hann window: 0.5 * (1 - cos(2*pi*i / (n - 1)))."""
    if n <= 0:
        return np.zeros(0)
    return _cached_hann(n)


@dataclass(frozen=True, eq=False)
class SpectrumFrame:
    """Complex spectrum of one frame; bins at or above N/2 mirror the lower half"""
    re: np.ndarray
    im: np.ndarray
    sample_rate: int

    @property
    def fft_size(self) -> int:
        return len(self.re)

    @property
    def bin_width(self) -> float:
        return self.sample_rate / self.fft_size

    def bin_frequency(self, index: int) -> float:
        return index * self.sample_rate / self.fft_size

    def power(self) -> np.ndarray:
        """re^2 + im^2 for the bins below Nyquist."""
        half = self.fft_size // 2
        return self.re[:half] ** 2 + self.im[:half] ** 2

    def magnitude(self) -> np.ndarray:
        return np.sqrt(self.power())


def forward_spectrum(samples, fft_size: int, sample_rate: int, window: bool = True) -> SpectrumFrame:
    """Window (Hann by default), zero-pad to fft_size and transform.

    Raises InvalidSizeError for a non power-of-two size and
    InvalidConfigurationError when the frame is longer than fft_size.
    """
    if not is_power_of_two(fft_size):
        raise InvalidSizeError(fft_size)
    data = np.asarray(samples, dtype=np.float64)
    if len(data) > fft_size:
        raise InvalidConfigurationError(
            f"Analysis window ({len(data)} samples) is larger than fft_size ({fft_size})")

    re = np.zeros(fft_size)
    im = np.zeros(fft_size)
    if window:
        re[:len(data)] = data * hann_window(len(data))
    else:
        re[:len(data)] = data
    transform(re, im)
    return SpectrumFrame(re, im, sample_rate)
