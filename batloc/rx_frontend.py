"""
Receiver Front-End Processing
TDOA estimation by normalised cross-correlation against the reference sensor
"""

import numpy as np
from dataclasses import dataclass
from typing import Optional, Tuple, Union
from scipy import signal as scipy_signal

from .channel import PropagatedSignalSet


@dataclass(frozen=True)
class DelayEstimate:
    """Estimated delays of sensors 1..N-1 relative to sensor 0"""
    delays: np.ndarray             # (N-1,) seconds
    lags_samples: np.ndarray       # (N-1,) lag of the chosen peak, in samples
    peak_correlations: np.ndarray  # (N-1,) |coefficient| at the chosen lag

    def __len__(self) -> int:
        return len(self.delays)


def normalized_xcorr(
    x: np.ndarray,
    ref: np.ndarray,
    method: str = 'auto'
) -> Tuple[np.ndarray, np.ndarray]:
    """
    Energy-normalised cross-correlation of x against ref

    Positive lags mean x lags behind ref. Coefficients are bounded to
    [-1, 1]; if either input has zero energy all coefficients are zero.

    Args:
        x: Signal to align
        ref: Reference signal
        method: Passed to scipy.signal.correlate ('auto', 'direct', 'fft')

    Returns:
        (coefficients, lags) over every overlap of the two signals
    """
    correlation = scipy_signal.correlate(x, ref, mode='full', method=method)
    lags = scipy_signal.correlation_lags(len(x), len(ref), mode='full')

    energy = np.sqrt(np.sum(x**2) * np.sum(ref**2))
    if energy > 0:
        correlation = np.clip(correlation / energy, -1.0, 1.0)
    else:
        correlation = np.zeros_like(correlation, dtype=float)

    return correlation, lags


def _parabolic_offset(y1: float, y2: float, y3: float) -> float:
    """Vertex offset of the parabola through three equally spaced samples"""
    denom = 2 * y2 - y1 - y3
    if y2 >= y1 and y2 >= y3 and abs(denom) > 1e-12:
        return 0.5 * (y3 - y1) / denom
    return 0.0


def estimate_tdoa(
    signals: Union[PropagatedSignalSet, np.ndarray],
    sample_rate: Optional[float] = None,
    max_delay: Optional[float] = None,
    subsample: bool = False,
    method: str = 'auto'
) -> DelayEstimate:
    """
    Estimate the delay of every non-reference sensor relative to sensor 0

    For each sensor the lag maximising the absolute normalised
    cross-correlation with sensor 0 is taken; exact ties resolve to the
    lowest lag. A channel with zero energy gives a NaN delay.

    Ties are exact only with method='direct'. 'auto' picks the FFT path for
    long signals, whose rounding can split equal peaks by a few ulp and so
    select either of them.

    Args:
        signals: PropagatedSignalSet or (n_sensors, n_samples) array
        sample_rate: Required when signals is a raw array
        max_delay: If given, only lags with |lag| <= ceil(max_delay * fs)
            samples are searched
        subsample: Refine the peak by parabolic interpolation
        method: Correlation method for scipy.signal.correlate; use 'direct'
            when tie order matters

    Returns:
        DelayEstimate with N-1 entries in sensor order
    """
    if isinstance(signals, PropagatedSignalSet):
        channels = signals.signals
        fs = signals.sample_rate if sample_rate is None else sample_rate
    else:
        channels = np.asarray(signals, dtype=float)
        if sample_rate is None:
            raise ValueError("sample_rate is required when signals is a raw array")
        fs = sample_rate

    if channels.ndim != 2 or channels.shape[0] < 2:
        raise ValueError(f"Expected (n_sensors >= 2, n_samples) array, got shape {channels.shape}")

    ref = channels[0]
    n_others = channels.shape[0] - 1
    delays = np.zeros(n_others)
    lags_out = np.zeros(n_others)
    peaks = np.zeros(n_others)

    for i in range(1, channels.shape[0]):
        coeffs, lags = normalized_xcorr(channels[i], ref, method=method)
        magnitude = np.abs(coeffs)

        if max_delay is not None:
            window = int(np.ceil(max_delay * fs))
            magnitude = np.where(np.abs(lags) <= window, magnitude, -1.0)

        idx = int(np.argmax(magnitude))
        peak = magnitude[idx]

        if peak <= 0:
            delays[i - 1] = np.nan
            lags_out[i - 1] = np.nan
            peaks[i - 1] = 0.0
            continue

        lag = float(lags[idx])
        # Masked neighbours (-1) at the window edge are not refined against
        if subsample and 0 < idx < len(magnitude) - 1 and min(magnitude[idx - 1], magnitude[idx + 1]) >= 0:
            lag += _parabolic_offset(magnitude[idx - 1], peak, magnitude[idx + 1])

        delays[i - 1] = lag / fs
        lags_out[i - 1] = lag
        peaks[i - 1] = peak

    return DelayEstimate(delays=delays, lags_samples=lags_out, peak_correlations=peaks)
