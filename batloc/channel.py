"""
Acoustic Propagation Model
Free-field propagation of a call to every sensor: shared AWGN, atmospheric
absorption, spherical spreading and fractional-sample delay
"""

import numpy as np
from dataclasses import dataclass
from typing import Optional, Union

from .errors import ConfigurationError
from .geometry import compute_az_el
from .signal import SyntheticCall, signal_power
from .config import ATTENUATION_COEFF, SPEED_OF_SOUND


@dataclass(frozen=True)
class PropagatedSignalSet:
    """Per-sensor waveforms on a common time base plus ground truth"""
    signals: np.ndarray           # (n_sensors, n_samples)
    sample_rate: float            # Hz
    source_position: np.ndarray   # (3,)
    sensor_positions: np.ndarray  # (n_sensors, 3)
    distances: np.ndarray         # (n_sensors,) meters
    delays: np.ndarray            # (n_sensors,) seconds, delays[0] == 0
    azimuth_deg: float            # source direction seen from sensor 0
    elevation_deg: float

    @property
    def n_sensors(self) -> int:
        return self.signals.shape[0]

    @property
    def n_samples(self) -> int:
        return self.signals.shape[1]


def add_awgn(
    signal: np.ndarray,
    snr_db: Optional[float],
    rng: Optional[np.random.RandomState] = None
) -> np.ndarray:
    """
    Add real white Gaussian noise at the specified SNR

    The noise power is set from the measured power of the input.

    Args:
        signal: Input signal
        snr_db: Desired SNR in dB (None or +inf returns a copy)
        rng: Random state; the global numpy state is used if None

    Returns:
        Signal with noise added
    """
    if snr_db is None or np.isposinf(snr_db):
        return np.array(signal, dtype=float)

    # Calculate signal power
    power = signal_power(signal)

    if power == 0:
        return np.array(signal, dtype=float)

    # Calculate noise power for desired SNR
    snr_linear = 10**(snr_db / 10)
    noise_power = power / snr_linear

    randn = rng.randn if rng is not None else np.random.randn
    noise = np.sqrt(noise_power) * randn(len(signal))

    return signal + noise


def next_pow2(n: int) -> int:
    """Smallest power of two >= n"""
    return 1 << max(0, int(n - 1).bit_length())


def attenuation_db_per_m(
    freqs_hz: np.ndarray,
    coeff: float = ATTENUATION_COEFF
) -> np.ndarray:
    """Absorption alpha(f) = coeff * (f / 1 kHz)^2 in dB per meter"""
    return coeff * (np.asarray(freqs_hz, dtype=float) / 1000.0)**2


def attenuation_gain(
    freqs_hz: np.ndarray,
    distance_m: float,
    coeff: float = ATTENUATION_COEFF
) -> np.ndarray:
    """Linear amplitude gain 10^(-alpha(f) d / 20) after distance_m meters"""
    return 10**(-attenuation_db_per_m(freqs_hz, coeff) * distance_m / 20)


def apply_attenuation(
    x: np.ndarray,
    distance_m: float,
    sample_rate: float,
    coeff: float = ATTENUATION_COEFF
) -> np.ndarray:
    """
    Apply frequency-dependent absorption over a path length

    The gain is applied to the one-sided spectrum of a power-of-two real
    FFT; the inverse real FFT keeps the result real and the output is cut
    back to the input length.

    Args:
        x: Input signal
        distance_m: Path length in meters
        sample_rate: Sampling rate in Hz
        coeff: Absorption coefficient in dB/m per kHz^2

    Returns:
        Attenuated signal, same length as x
    """
    n = len(x)
    nfft = next_pow2(n)

    spectrum = np.fft.rfft(x, nfft)
    freqs = np.fft.rfftfreq(nfft, d=1.0 / sample_rate)
    spectrum *= attenuation_gain(freqs, distance_m, coeff)

    return np.fft.irfft(spectrum, nfft)[:n]


def fractional_delay(
    x: np.ndarray,
    delay_samples: float,
    out_len: int
) -> np.ndarray:
    """
    Delay a signal by a possibly non-integer number of samples

    Samples are linearly interpolated at n - delay_samples; positions
    outside the input range read as zero. The result is zero-padded or
    truncated to out_len.
    """
    n = np.arange(len(x))
    y = np.interp(n - delay_samples, n, x, left=0.0, right=0.0)

    out = np.zeros(out_len)
    m = min(out_len, len(y))
    out[:m] = y[:m]
    return out


def propagate(
    call: Union[SyntheticCall, np.ndarray],
    sensor_positions: np.ndarray,
    source_position: np.ndarray,
    snr_db: Optional[float],
    speed_of_sound: float = SPEED_OF_SOUND,
    sample_rate: Optional[float] = None,
    attenuation_coeff: float = ATTENUATION_COEFF,
    rng: Optional[Union[np.random.RandomState, int]] = None
) -> PropagatedSignalSet:
    """
    Propagate a call from a point source to every sensor

    One noisy copy of the call feeds every channel, so all sensors see the
    same noise realisation. Each channel is then attenuated over its own
    path, scaled by distance_0 / distance_i and delayed relative to sensor 0.

    Args:
        call: SyntheticCall, or raw samples together with sample_rate
        sensor_positions: (N, 3) sensor coordinates, sensor 0 is the reference
        source_position: (3,) source coordinates
        snr_db: SNR of the injected noise in dB (None for a noiseless run)
        speed_of_sound: m/s
        sample_rate: Required when call is a raw array
        attenuation_coeff: Absorption coefficient in dB/m per kHz^2
        rng: RandomState or integer seed for the noise

    Returns:
        PropagatedSignalSet
    """
    if isinstance(call, SyntheticCall):
        waveform = call.waveform
        fs = call.sample_rate if sample_rate is None else sample_rate
    else:
        waveform = np.asarray(call, dtype=float)
        if sample_rate is None:
            raise ValueError("sample_rate is required when call is a raw array")
        fs = sample_rate

    if rng is None or isinstance(rng, (int, np.integer)):
        rng = np.random.RandomState(rng)

    mics = np.asarray(sensor_positions, dtype=float)
    source = np.asarray(source_position, dtype=float)
    if mics.ndim != 2 or mics.shape[1] != 3 or len(mics) < 2:
        raise ConfigurationError(f"Sensor positions must be an (N, 3) array, got shape {mics.shape}")
    if speed_of_sound <= 0:
        raise ConfigurationError(f"Speed of sound must be positive, got {speed_of_sound}")

    call_noisy = add_awgn(waveform, snr_db, rng)

    distances = np.linalg.norm(mics - source, axis=1)
    if distances[0] <= 0:
        raise ConfigurationError(
            f"Source {source.tolist()} coincides with the reference sensor"
        )
    if np.any(distances <= 0):
        raise ConfigurationError(
            f"Source {source.tolist()} coincides with sensor {int(np.argmin(distances))}"
        )

    delays = distances / speed_of_sound
    delays = delays - delays[0]

    n_call = len(call_noisy)
    total_samples = n_call + int(np.ceil(np.max(delays) * fs))
    signals = np.zeros((len(mics), total_samples))

    for i, d_i in enumerate(distances):
        attenuated = apply_attenuation(call_noisy, d_i, fs, attenuation_coeff)
        geom_scale = distances[0] / d_i
        signals[i] = geom_scale * fractional_delay(attenuated, delays[i] * fs, total_samples)

    azimuth, elevation = compute_az_el(source, mics[0])

    return PropagatedSignalSet(
        signals=signals,
        sample_rate=float(fs),
        source_position=source.copy(),
        sensor_positions=mics.copy(),
        distances=distances,
        delays=delays,
        azimuth_deg=azimuth,
        elevation_deg=elevation
    )
