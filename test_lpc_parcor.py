# Copyright 2025
# Damien Davison & Michael Maillet & Sacha Davison
# Recursive AI Devs
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at:
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

import numpy as np
import pytest

from lpconv import (
    ConversionError,
    LinearPredictiveCoefficientsToParcorCoefficients,
    ParcorCoefficientsToLinearPredictiveCoefficients,
    lpc_to_parcor,
    parcor_to_lpc,
)
from test_utils import random_parcor


def test_parcor_to_lpc_known_values():
    lpc = ParcorCoefficientsToLinearPredictiveCoefficients(2).run([0.3, 0.5, 0.5])

    assert lpc == pytest.approx([0.3, 0.75, 0.5])


def test_lpc_to_parcor_known_values():
    result = LinearPredictiveCoefficientsToParcorCoefficients(2, 1.0).run([0.3, 0.75, 0.5])

    assert result.is_stable
    assert result.coefficients == pytest.approx([0.3, 0.5, 0.5])


@pytest.mark.parametrize("order", [1, 2, 5, 16])
def test_parcor_round_trip(order):
    rng = np.random.default_rng(order)
    to_lpc = ParcorCoefficientsToLinearPredictiveCoefficients(order)
    to_parcor = LinearPredictiveCoefficientsToParcorCoefficients(order, 1.0)
    lpc_buffer = ParcorCoefficientsToLinearPredictiveCoefficients.Buffer()
    parcor_buffer = LinearPredictiveCoefficientsToParcorCoefficients.Buffer()

    for _ in range(10):
        parcor = random_parcor(order, bound=0.9, gain=rng.uniform(0.1, 2.0), rng=rng)
        lpc = to_lpc.run(parcor, buffer=lpc_buffer)
        result = to_parcor.run(lpc, buffer=parcor_buffer)

        assert result.is_stable
        assert np.allclose(result.coefficients, parcor, atol=1e-8)


def test_first_order_instability_detected():
    result = LinearPredictiveCoefficientsToParcorCoefficients(1, 1.0).run([1.0, 2.0])

    assert not result.is_stable
    assert result.coefficients == pytest.approx([1.0, 2.0])


def test_instability_in_lower_order_detected():
    # k(2) = 0.5 is fine, k(1) = (2.0 - 0.5 * 2.0) / 0.75 = 4/3 is not.
    result = LinearPredictiveCoefficientsToParcorCoefficients(2, 1.0).run([1.0, 2.0, 0.5])

    assert not result.is_stable
    assert result.coefficients[1] == pytest.approx(4.0 / 3.0)
    assert result.coefficients[2] == pytest.approx(0.5)


def test_unit_reflection_does_not_raise():
    with np.errstate(all="raise"):
        result = LinearPredictiveCoefficientsToParcorCoefficients(2, 1.0).run([1.0, 0.3, 1.0])

    assert not result.is_stable
    assert result.coefficients[2] == 1.0
    assert not np.isfinite(result.coefficients[1])


def test_gamma_scales_coefficients_but_not_gain():
    lpc = np.array([0.7, -0.8, 0.4, 0.2])
    gamma = -0.5

    scaled = LinearPredictiveCoefficientsToParcorCoefficients(3, gamma).run(lpc)
    manual = np.concatenate(([lpc[0]], gamma * lpc[1:]))
    reference = LinearPredictiveCoefficientsToParcorCoefficients(3, 1.0).run(manual)

    assert scaled.coefficients[0] == pytest.approx(0.7)
    assert np.allclose(scaled.coefficients, reference.coefficients)
    assert scaled.is_stable == reference.is_stable


def test_gamma_can_stabilize_first_order():
    result = LinearPredictiveCoefficientsToParcorCoefficients(1, 0.25).run([1.0, 2.0])

    assert result.is_stable
    assert result.coefficients[1] == pytest.approx(0.5)


@pytest.mark.parametrize("order,gamma", [(-1, 1.0), (3, 1.5), (3, -1.01)])
def test_invalid_lpc_to_parcor_configuration(order, gamma):
    converter = LinearPredictiveCoefficientsToParcorCoefficients(order, gamma)
    assert not converter.is_valid
    with pytest.raises(ConversionError):
        converter.run(np.zeros(max(order, 0) + 1))


def test_invalid_parcor_to_lpc_configuration():
    converter = ParcorCoefficientsToLinearPredictiveCoefficients(-2)
    assert not converter.is_valid
    with pytest.raises(ConversionError):
        converter.run([1.0])


def test_length_mismatch_raises():
    with pytest.raises(ConversionError):
        LinearPredictiveCoefficientsToParcorCoefficients(2, 1.0).run([1.0, 0.1])
    with pytest.raises(ConversionError):
        ParcorCoefficientsToLinearPredictiveCoefficients(2).run([1.0, 0.1, 0.2, 0.3])


def test_wrong_out_length_raises():
    with pytest.raises(ConversionError):
        ParcorCoefficientsToLinearPredictiveCoefficients(2).run(
            [1.0, 0.1, 0.2], out=np.zeros(4)
        )


def test_order_zero_copies_gain():
    assert LinearPredictiveCoefficientsToParcorCoefficients(0, 1.0).run([3.0]).coefficients[0] == 3.0
    assert ParcorCoefficientsToLinearPredictiveCoefficients(0).run([3.0])[0] == 3.0


def test_in_place_shapes_match_separate_output():
    parcor = random_parcor(8, seed=4)
    to_lpc = ParcorCoefficientsToLinearPredictiveCoefficients(8)
    to_parcor = LinearPredictiveCoefficientsToParcorCoefficients(8, 1.0)

    lpc = to_lpc.run(parcor)
    data = parcor.copy()
    assert to_lpc.run_in_place(data) is None
    assert np.array_equal(data, lpc)

    expected = to_parcor.run(lpc)
    assert to_parcor.run_in_place(data) == expected.is_stable
    assert np.array_equal(data, expected.coefficients)


def test_instances_are_read_only():
    converter = LinearPredictiveCoefficientsToParcorCoefficients(4, 0.5)
    assert converter.num_order == 4
    assert converter.gamma == 0.5
    with pytest.raises(AttributeError):
        converter.gamma = 1.0


def test_frame_wise_helpers():
    rng = np.random.default_rng(8)
    parcor = np.stack([random_parcor(6, rng=rng) for _ in range(5)])
    parcor[2, 3] = 1.5

    lpc = parcor_to_lpc(parcor)
    recovered, flags = lpc_to_parcor(lpc)

    assert lpc.shape == parcor.shape
    assert flags.tolist() == [True, True, False, True, True]
    stable_rows = [0, 1, 3, 4]
    assert np.allclose(recovered[stable_rows], parcor[stable_rows], atol=1e-9)
