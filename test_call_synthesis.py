#!/usr/bin/env python3
"""
Tests for synthetic call generation
Length, padding, determinism, sweep direction and parameter checks
"""

import numpy as np
import sys
from scipy.signal import freqz

from batloc.errors import ConfigurationError
from batloc.config import SimulationConfig
from batloc.signal import (
    generate_call, generate_call_from_config, emphasis_frequency,
    design_emphasis_filter, quadratic_sweep, signal_power
)


def _zero_crossings(x):
    return int(np.sum(np.signbit(x[1:]) != np.signbit(x[:-1])))


def test_call_length_and_padding():
    """Call is round(d*fs) sweep samples with taper% zeros either side"""
    print("=" * 60)
    print("Testing Call Length and Padding")
    print("=" * 60)

    call = generate_call(25e3, 80e3, 5e-3, 384e3, 50)

    assert call.n_sweep_samples == 1920, f"Expected 1920 sweep samples, got {call.n_sweep_samples}"
    assert call.n_pad_samples == 960, f"Expected 960 pad samples, got {call.n_pad_samples}"
    assert len(call) == 1920 + 2 * 960

    assert np.all(call.waveform[:960] == 0), "Leading silence should be zeros"
    assert np.all(call.waveform[-960:] == 0), "Trailing silence should be zeros"
    assert signal_power(call.waveform[960:-960]) > 0, "Sweep should carry energy"
    print(f"✓ {len(call)} samples, {call.n_pad_samples} zeros each side")

    no_pad = generate_call(25e3, 80e3, 5e-3, 384e3, 0)
    assert len(no_pad) == 1920, "Zero taper should add no silence"
    print("✓ Zero taper adds no padding")


def test_call_is_deterministic():
    """Same parameters give bit-identical calls"""
    a = generate_call(25e3, 80e3, 5e-3, 384e3, 50)
    b = generate_call(25e3, 80e3, 5e-3, 384e3, 50)

    assert np.array_equal(a.waveform, b.waveform), "Call synthesis should be deterministic"
    print("✓ Call synthesis is deterministic")


def test_sweep_descends():
    """Instantaneous frequency falls over the call"""
    call = generate_call(25e3, 80e3, 5e-3, 384e3, 0)
    sweep = call.waveform

    early = _zero_crossings(sweep[240:720])
    late = _zero_crossings(sweep[1200:1680])

    assert early > 1.3 * late, f"Expected a descending sweep, got {early} vs {late} crossings"
    print(f"✓ Descending sweep: {early} early vs {late} late zero crossings")


def test_quadratic_sweep_samples():
    sweep = quadratic_sweep(25e3, 80e3, 5e-3, 384e3)
    assert len(sweep) == 1920
    assert abs(sweep[0] - 1.0) < 1e-12, "Chirp starts at zero phase"


def test_emphasis_response():
    """Emphasis filter passes its centre and nulls both sweep ends"""
    f0, f1, fs = 25e3, 80e3, 384e3
    fmax = emphasis_frequency(f0, f1)
    assert abs(fmax - (52.5e3 - 25e3 / 3)) < 1e-6

    b, a = design_emphasis_filter(f0, f1, fs)
    assert len(b) == 5 and len(a) == 5, "Emphasis filter should be 4th order"
    assert np.all(np.abs(np.roots(a)) < 1), "Emphasis filter should be stable"

    _, h = freqz(b, a, worN=[f0, fmax, f1], fs=fs)
    gain = np.abs(h)
    floor = 10**(-30 / 20)

    assert abs(gain[1] - 1.0) < 1e-9, f"Unit gain expected at {fmax:.0f} Hz, got {gain[1]}"
    assert gain[0] < floor, f"Gain at start frequency {20 * np.log10(gain[0] + 1e-300):.1f} dB"
    assert gain[2] < floor, f"Gain at end frequency {20 * np.log10(gain[2] + 1e-300):.1f} dB"

    _, h = freqz(b, a, worN=[35e3, 60e3], fs=fs)
    assert np.all(np.abs(h) > floor), "Frequencies between the nulls should pass"
    print(f"✓ Emphasis at {fmax/1e3:.1f} kHz, nulls at {f0/1e3:.0f} and {f1/1e3:.0f} kHz")


def test_invalid_parameters():
    """Bad parameters raise ConfigurationError"""
    bad_cases = [
        dict(start_freq=25e3, end_freq=80e3, duration=0.0, sample_rate=384e3, taper_percent=50),
        dict(start_freq=25e3, end_freq=80e3, duration=5e-3, sample_rate=0.0, taper_percent=50),
        dict(start_freq=25e3, end_freq=80e3, duration=5e-3, sample_rate=384e3, taper_percent=-1),
        dict(start_freq=25e3, end_freq=80e3, duration=1e-7, sample_rate=384e3, taper_percent=50),
        # Emphasis band beyond Nyquist
        dict(start_freq=300e3, end_freq=80e3, duration=5e-3, sample_rate=384e3, taper_percent=50),
    ]

    for kwargs in bad_cases:
        try:
            generate_call(**kwargs)
        except ConfigurationError:
            continue
        assert False, f"Expected ConfigurationError for {kwargs}"

    print(f"✓ {len(bad_cases)} invalid parameter sets rejected")


def test_call_from_config():
    config = SimulationConfig(duration=2e-3, taper_percent=25)
    call = generate_call_from_config(config)

    assert call.n_sweep_samples == 768
    assert call.n_pad_samples == 192
    assert call.sample_rate == config.sample_rate


def main():
    """Run all call synthesis tests"""
    print("\n" + "=" * 60)
    print("CALL SYNTHESIS TEST SUITE")
    print("=" * 60 + "\n")

    try:
        test_call_length_and_padding()
        test_call_is_deterministic()
        test_sweep_descends()
        test_quadratic_sweep_samples()
        test_emphasis_response()
        test_invalid_parameters()
        test_call_from_config()

        print("\n✅ ALL TESTS PASSED!")
        return True

    except AssertionError as e:
        print(f"\n❌ TEST FAILED: {e}")
        return False


if __name__ == "__main__":
    success = main()
    sys.exit(0 if success else 1)
