import numpy as np
import pytest

from eqviz.patterns import PATTERN_KINDS, generate_test_data


@pytest.mark.parametrize("kind", PATTERN_KINDS)
def test_patterns_are_byte_frames(kind):
    data = generate_test_data(256, kind, rng=np.random.default_rng(1))
    assert data.dtype == np.uint8
    assert data.shape == (256,)


def test_sine_pattern_starts_mid_scale():
    data = generate_test_data(256, "sine", 440)
    assert data[0] == 127
    assert data.max() <= 255


def test_random_pattern_is_seedable():
    a = generate_test_data(64, "random", rng=np.random.default_rng(3))
    b = generate_test_data(64, "random", rng=np.random.default_rng(3))
    assert np.array_equal(a, b)
    assert a.max() <= 254


def test_pulse_pattern_stays_below_noise_ceiling():
    data = generate_test_data(512, "pulse", rng=np.random.default_rng(0))
    assert data.max() <= int(1.3 * 127.5)


def test_unknown_kind_is_silence():
    assert generate_test_data(16, "nope").tolist() == [128] * 16
    assert generate_test_data(0).size == 0
