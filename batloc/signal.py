"""
Call Synthesis Module
Synthetic bat echolocation call: descending quadratic sweep, spectral emphasis and Hann taper
"""

import numpy as np
from typing import Tuple
from dataclasses import dataclass
from scipy import signal as scipy_signal

from .errors import ConfigurationError


EMPHASIS_Q = 1.0  # quality factor of the emphasis resonance


@dataclass(frozen=True)
class SyntheticCall:
    """Synthesised call before propagation"""
    waveform: np.ndarray      # 1D real samples, silence + call + silence
    sample_rate: float        # Hz
    start_freq: float         # Hz
    end_freq: float           # Hz
    duration: float           # seconds, sweep only
    n_sweep_samples: int
    n_pad_samples: int        # zeros on each side of the sweep

    def __len__(self) -> int:
        return len(self.waveform)


def emphasis_frequency(start_freq: float, end_freq: float) -> float:
    """Centre of the spectral emphasis: mean(f0, f1) - f0/3"""
    return (start_freq + end_freq) / 2 - start_freq / 3


def design_emphasis_filter(
    start_freq: float,
    end_freq: float,
    sample_rate: float,
    q: float = EMPHASIS_Q
) -> Tuple[np.ndarray, np.ndarray]:
    """
    4th-order resonator emphasising the call around emphasis_frequency

    Zeros sit on the unit circle at both sweep end frequencies, so the
    response vanishes there. The denominator is the squared pole pair of
    a 2nd-order peaking filter at the emphasis frequency, and the gain is
    normalised to 1 at that frequency.

    Args:
        start_freq: Sweep start frequency in Hz
        end_freq: Sweep end frequency in Hz
        sample_rate: Sampling rate in Hz
        q: Quality factor of the resonant pole pair

    Returns:
        (b, a) filter coefficients
    """
    nyquist = sample_rate / 2
    fmax = emphasis_frequency(start_freq, end_freq)

    for name, freq in (('start', start_freq), ('end', end_freq), ('emphasis', fmax)):
        if not 0 < freq < nyquist:
            raise ConfigurationError(
                f"Emphasis filter {name} frequency {freq:.0f} Hz is not inside (0, {nyquist:.0f}) Hz"
            )

    b = np.array([1.0])
    for freq in (start_freq, end_freq):
        w = 2 * np.pi * freq / sample_rate
        b = np.convolve(b, [1.0, -2.0 * np.cos(w), 1.0])

    _, pole_pair = scipy_signal.iirpeak(fmax, q, fs=sample_rate)
    a = np.convolve(pole_pair, pole_pair)

    _, h = scipy_signal.freqz(b, a, worN=[fmax], fs=sample_rate)
    b = b / np.abs(h[0])

    return b, a


def quadratic_sweep(
    start_freq: float,
    end_freq: float,
    duration: float,
    sample_rate: float
) -> np.ndarray:
    """
    Quadratic chirp f(t) = f0 + (f1 - f0) (t / T)^2 sampled at t = k / fs

    Args:
        start_freq: Frequency at t = 0 in Hz
        end_freq: Frequency at t = duration in Hz
        duration: Sweep duration in seconds
        sample_rate: Sampling rate in Hz

    Returns:
        Sweep samples, round(duration * sample_rate) of them
    """
    n_samples = int(round(duration * sample_rate))
    if n_samples < 1:
        raise ConfigurationError(
            f"duration * sample_rate must give at least one sample, got {duration * sample_rate}"
        )

    t = np.arange(n_samples) / sample_rate
    return scipy_signal.chirp(t, f0=start_freq, t1=duration, f1=end_freq,
                              method='quadratic', vertex_zero=True)


def generate_call(
    start_freq: float,
    end_freq: float,
    duration: float,
    sample_rate: float,
    taper_percent: float
) -> SyntheticCall:
    """
    Generate a synthetic bat call

    The quadratic sweep is time-reversed so the instantaneous frequency
    descends, shaped by the emphasis filter, tapered with a Hann window and
    padded with silence on both sides.

    Args:
        start_freq: Sweep start frequency in Hz
        end_freq: Sweep end frequency in Hz
        duration: Call duration in seconds
        sample_rate: Sampling rate in Hz
        taper_percent: Silence before and after the call, in percent of the
            sweep's sample count

    Returns:
        SyntheticCall
    """
    if sample_rate <= 0:
        raise ConfigurationError(f"Sample rate must be positive, got {sample_rate}")
    if duration <= 0:
        raise ConfigurationError(f"Call duration must be positive, got {duration}")
    if taper_percent < 0:
        raise ConfigurationError(f"Taper percent cannot be negative, got {taper_percent}")

    sweep = quadratic_sweep(start_freq, end_freq, duration, sample_rate)[::-1]

    b, a = design_emphasis_filter(start_freq, end_freq, sample_rate)
    shaped = scipy_signal.lfilter(b, a, sweep)

    n_sweep = len(shaped)
    tapered = shaped * scipy_signal.windows.hann(n_sweep, sym=True)

    n_pad = int(round(n_sweep * taper_percent / 100))
    waveform = np.concatenate([np.zeros(n_pad), tapered, np.zeros(n_pad)])

    return SyntheticCall(
        waveform=waveform,
        sample_rate=float(sample_rate),
        start_freq=float(start_freq),
        end_freq=float(end_freq),
        duration=float(duration),
        n_sweep_samples=n_sweep,
        n_pad_samples=n_pad
    )


def generate_call_from_config(config) -> SyntheticCall:
    """Generate the call described by a SimulationConfig"""
    return generate_call(
        config.start_freq,
        config.end_freq,
        config.duration,
        config.sample_rate,
        config.taper_percent
    )


def signal_power(x: np.ndarray) -> float:
    """Mean power of a signal"""
    return float(np.mean(np.abs(x)**2))
