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

"""
Conversion and stabilization of all-pole filter parameters.

Every vector handled here has ``num_order + 1`` entries. Slot 0 holds the
gain (or the energy, for autocorrelation) and is never treated as a
prediction or reflection coefficient.

    autocorrelation --LevinsonDurbinRecursion--> LPC
    LPC <--LPC-to-PARCOR / PARCOR-to-LPC--> PARCOR
    LPC --LinearPredictiveCoefficientsStabilityCheck--> stable LPC
"""

import logging
from dataclasses import dataclass
from typing import Optional, Sequence, Tuple, Union

import numpy as np

# Configure module logger
logger = logging.getLogger(__name__)

__version__ = "1.0.0"

ArrayLike = Union[Sequence[float], np.ndarray]


class ConversionError(ValueError):
    """Hard failure of a conversion: bad configuration, bad input or a singular system."""


@dataclass
class ConversionResult:
    """Coefficients of one frame plus the stability diagnostic."""

    coefficients: np.ndarray
    is_stable: bool


@dataclass
class StabilityCheckResult:
    """Verdict on the original coefficients and, if requested, the corrected ones."""

    is_stable: bool
    coefficients: Optional[np.ndarray] = None


class _OrderRecursiveBuffer:
    """Scratch rows reused across calls; grown when the order changes."""

    _fields: Tuple[str, ...] = ()

    def __init__(self):
        for name in self._fields:
            setattr(self, name, np.zeros(0, dtype=np.float64))

    def _prepare(self, length):
        for name in self._fields:
            if getattr(self, name).shape[0] != length:
                setattr(self, name, np.zeros(length, dtype=np.float64))


# ----------------------------------------------------------------------
# Input helpers
# ----------------------------------------------------------------------

def _as_frame(values, length, name):
    frame = np.asarray(values, dtype=np.float64)
    if frame.ndim != 1:
        raise ConversionError(f"{name} must be 1-D")
    if frame.shape[0] != length:
        raise ConversionError(f"Expected {name} of length {length}, got {frame.shape[0]}")
    return frame


def _prepare_output(out, length):
    if out is None:
        return np.empty(length, dtype=np.float64)
    if not isinstance(out, np.ndarray) or out.dtype != np.float64 or out.ndim != 1:
        raise ConversionError("out must be a 1-D float64 array")
    if out.shape[0] != length:
        raise ConversionError(f"Expected out of length {length}, got {out.shape[0]}")
    if not out.flags.writeable:
        raise ConversionError("out must be writeable")
    return out


def _check_in_place(data, length):
    if not isinstance(data, np.ndarray) or data.dtype != np.float64:
        raise ConversionError("In-place conversion requires a float64 array")
    return _prepare_output(data, length)


class LevinsonDurbinRecursion:
    """
    Solve the autocorrelation normal equations with Durbin's recursion.

    The input is the autocorrelation ``r(0), ..., r(M)`` and the output is
    ``K, a(1), ..., a(M)`` where ``K`` is the square root of the final
    prediction error energy.
    """

    class Buffer(_OrderRecursiveBuffer):
        _fields = ("c",)

    def __init__(self, num_order: int):
        """
        Args:
            num_order: Order of the coefficients (M >= 0)
        """
        self._num_order = num_order
        self._is_valid = num_order >= 0

    @property
    def num_order(self) -> int:
        return self._num_order

    @property
    def is_valid(self) -> bool:
        return self._is_valid

    def run(
        self,
        autocorrelation: ArrayLike,
        out: Optional[np.ndarray] = None,
        buffer: Optional["LevinsonDurbinRecursion.Buffer"] = None,
    ) -> ConversionResult:
        """
        Args:
            autocorrelation: M+1 autocorrelation values
            out: Optional preallocated float64 array of length M+1
            buffer: Scratch buffer owned by the caller

        Returns:
            ConversionResult with the LPC coefficients. ``is_stable`` is False
            if any reflection coefficient had magnitude >= 1.

        Raises:
            ConversionError: on invalid configuration or input, or when the
                prediction error energy vanishes or becomes NaN.
        """
        if not self._is_valid:
            raise ConversionError("LevinsonDurbinRecursion is not valid")

        length = self._num_order + 1
        r = _as_frame(autocorrelation, length, "autocorrelation")
        a = _prepare_output(out, length)
        if np.shares_memory(r, a):
            r = r.copy()
        if buffer is None:
            buffer = self.Buffer()
        buffer._prepare(length)
        c = buffer.c

        is_stable = True

        e = float(r[0])
        if e == 0.0 or np.isnan(e):
            raise ConversionError("Autocorrelation r(0) must be non-zero and not NaN")
        a[0] = 0.0

        for i in range(1, length):
            k = -(r[i] + np.dot(c[1:i], r[i - 1 : 0 : -1])) / e

            # Keep going on instability; the caller decides what to do with it.
            if abs(k) >= 1.0:
                is_stable = False

            a[1:i] = c[1:i] + k * c[i - 1 : 0 : -1]
            a[i] = k

            e *= 1.0 - k * k
            if e == 0.0 or np.isnan(e):
                raise ConversionError(
                    f"Prediction error energy vanished at order {i}; system is singular"
                )

            c[: i + 1] = a[: i + 1]

        with np.errstate(invalid="ignore"):
            a[0] = np.sqrt(e)

        return ConversionResult(coefficients=a, is_stable=is_stable)

    def run_in_place(self, data: np.ndarray, buffer: Optional["LevinsonDurbinRecursion.Buffer"] = None) -> bool:
        """Overwrite ``data`` (autocorrelation) with LPC coefficients; return the stability flag."""
        _check_in_place(data, self._num_order + 1)
        return self.run(data.copy(), out=data, buffer=buffer).is_stable


class LinearPredictiveCoefficientsToParcorCoefficients:
    """
    Transform LPC coefficients to PARCOR coefficients.

    The recursion runs downward from order M::

        k(i) = a^(i)(i)
        a^(i-1)(m) = (a^(i)(m) - k(i) a^(i)(i-m)) / (1 - k(i)^2),  i = M, ..., 1

    with ``a^(M)(i) = gamma * a(i)``. With ``gamma = 1`` the input is plain LPC;
    otherwise it is read as normalized generalized cepstrum.
    """

    class Buffer(_OrderRecursiveBuffer):
        _fields = ("a",)

    def __init__(self, num_order: int, gamma: float = 1.0):
        self._num_order = num_order
        self._gamma = gamma
        self._is_valid = num_order >= 0 and abs(gamma) <= 1.0

    @property
    def num_order(self) -> int:
        return self._num_order

    @property
    def gamma(self) -> float:
        return self._gamma

    @property
    def is_valid(self) -> bool:
        return self._is_valid

    def run(
        self,
        linear_predictive_coefficients: ArrayLike,
        out: Optional[np.ndarray] = None,
        buffer: Optional["LinearPredictiveCoefficientsToParcorCoefficients.Buffer"] = None,
    ) -> ConversionResult:
        """
        Convert one frame of LPC coefficients to PARCOR coefficients.

        Instability never raises. Once a reflection coefficient reaches
        magnitude 1 the remaining values are diagnostic only and may be
        infinite or NaN.
        """
        if not self._is_valid:
            raise ConversionError(
                "LinearPredictiveCoefficientsToParcorCoefficients is not valid"
            )

        length = self._num_order + 1
        lpc = _as_frame(linear_predictive_coefficients, length, "linear_predictive_coefficients")
        k = _prepare_output(out, length)
        if buffer is None:
            buffer = self.Buffer()
        buffer._prepare(length)
        a = buffer.a

        a[0] = lpc[0]
        a[1:] = self._gamma * lpc[1:]
        k[0] = a[0]

        is_stable = True
        with np.errstate(divide="ignore", invalid="ignore", over="ignore"):
            for i in range(self._num_order, 0, -1):
                k[i] = a[i]
                if not abs(k[i]) < 1.0:
                    is_stable = False
                denominator = 1.0 - k[i] * k[i]
                a[1:i] = (a[1:i] - k[i] * a[i - 1 : 0 : -1]) / denominator

        return ConversionResult(coefficients=k, is_stable=is_stable)

    def run_in_place(
        self,
        data: np.ndarray,
        buffer: Optional["LinearPredictiveCoefficientsToParcorCoefficients.Buffer"] = None,
    ) -> bool:
        """Overwrite ``data`` with PARCOR coefficients; return the stability flag."""
        _check_in_place(data, self._num_order + 1)
        return self.run(data, out=data, buffer=buffer).is_stable


class ParcorCoefficientsToLinearPredictiveCoefficients:
    """
    Transform PARCOR coefficients to LPC coefficients.

    The recursion runs upward from order 1 and involves no division, so it is
    defined for any reflection coefficients::

        a^(i)(m) = a^(i-1)(m) + k(i) a^(i-1)(i-m),  m = 1, ..., i-1
        a^(i)(i) = k(i)
    """

    class Buffer(_OrderRecursiveBuffer):
        _fields = ("a",)

    def __init__(self, num_order: int):
        self._num_order = num_order
        self._is_valid = num_order >= 0

    @property
    def num_order(self) -> int:
        return self._num_order

    @property
    def is_valid(self) -> bool:
        return self._is_valid

    def run(
        self,
        parcor_coefficients: ArrayLike,
        out: Optional[np.ndarray] = None,
        buffer: Optional["ParcorCoefficientsToLinearPredictiveCoefficients.Buffer"] = None,
    ) -> np.ndarray:
        if not self._is_valid:
            raise ConversionError(
                "ParcorCoefficientsToLinearPredictiveCoefficients is not valid"
            )

        length = self._num_order + 1
        k = _as_frame(parcor_coefficients, length, "parcor_coefficients")
        a = _prepare_output(out, length)
        if buffer is None:
            buffer = self.Buffer()
        buffer._prepare(length)
        c = buffer.a

        # Copy first: k and a may be the same array.
        c[:] = k
        a[0] = c[0]
        for i in range(1, length):
            a[1:i] = a[1:i] + c[i] * a[i - 1 : 0 : -1]
            a[i] = c[i]
        return a

    def run_in_place(
        self,
        data: np.ndarray,
        buffer: Optional["ParcorCoefficientsToLinearPredictiveCoefficients.Buffer"] = None,
    ) -> None:
        _check_in_place(data, self._num_order + 1)
        self.run(data, out=data, buffer=buffer)


class LinearPredictiveCoefficientsStabilityCheck:
    """
    Check the stability of LPC coefficients and force a stable filter.

    The coefficients are converted to PARCOR, every reflection coefficient
    with magnitude >= ``1 - margin`` is pulled back to ``sign(k) (1 - margin)``,
    and the result is converted back to LPC.
    """

    class Buffer:
        def __init__(self):
            self.conversion_buffer = LinearPredictiveCoefficientsToParcorCoefficients.Buffer()
            self.reconversion_buffer = ParcorCoefficientsToLinearPredictiveCoefficients.Buffer()
            self.parcor_coefficients = np.zeros(0, dtype=np.float64)

    def __init__(self, num_order: int, margin: float = 1e-16):
        """
        Args:
            num_order: Order of the coefficients (M >= 0)
            margin: Distance from the unit circle, 0 <= margin < 1
        """
        self._num_order = num_order
        self._margin = margin
        self._to_parcor = LinearPredictiveCoefficientsToParcorCoefficients(num_order, 1.0)
        self._to_lpc = ParcorCoefficientsToLinearPredictiveCoefficients(num_order)
        self._is_valid = (
            self._to_parcor.is_valid and self._to_lpc.is_valid and 0.0 <= margin < 1.0
        )

    @property
    def num_order(self) -> int:
        return self._num_order

    @property
    def margin(self) -> float:
        return self._margin

    @property
    def is_valid(self) -> bool:
        return self._is_valid

    def run(
        self,
        linear_predictive_coefficients: ArrayLike,
        correct: bool = True,
        out: Optional[np.ndarray] = None,
        buffer: Optional["LinearPredictiveCoefficientsStabilityCheck.Buffer"] = None,
    ) -> StabilityCheckResult:
        """
        Args:
            linear_predictive_coefficients: M+1 LPC coefficients (gain first)
            correct: Whether to compute corrected coefficients
            out: Optional preallocated array for the corrected coefficients
            buffer: Scratch buffer owned by the caller

        Returns:
            StabilityCheckResult. ``is_stable`` describes the input, not the
            corrected coefficients, which are stable by construction.
        """
        if not self._is_valid:
            raise ConversionError("LinearPredictiveCoefficientsStabilityCheck is not valid")

        length = self._num_order + 1
        if buffer is None:
            buffer = self.Buffer()
        if buffer.parcor_coefficients.shape[0] != length:
            buffer.parcor_coefficients = np.zeros(length, dtype=np.float64)
        parcor = buffer.parcor_coefficients

        conversion = self._to_parcor.run(
            linear_predictive_coefficients, out=parcor, buffer=buffer.conversion_buffer
        )
        if not correct:
            return StabilityCheckResult(is_stable=conversion.is_stable)

        reflection = parcor[1:]
        if not np.all(np.isfinite(reflection)):
            raise ConversionError(
                "Reflection coefficients are not finite; coefficients cannot be corrected"
            )

        bound = 1.0 - self._margin
        over = np.abs(reflection) >= bound
        if np.any(over):
            logger.debug(f"Clamping reflection coefficients {np.flatnonzero(over) + 1} to {bound}")
            reflection[over] = np.sign(reflection[over]) * bound

        corrected = self._to_lpc.run(parcor, out=out, buffer=buffer.reconversion_buffer)
        return StabilityCheckResult(is_stable=conversion.is_stable, coefficients=corrected)

    def run_in_place(
        self,
        data: np.ndarray,
        buffer: Optional["LinearPredictiveCoefficientsStabilityCheck.Buffer"] = None,
    ) -> bool:
        """Replace ``data`` with corrected coefficients; return the original stability flag."""
        _check_in_place(data, self._num_order + 1)
        return self.run(data, out=data, buffer=buffer).is_stable


# ----------------------------------------------------------------------
# Frame-wise convenience API
# ----------------------------------------------------------------------

def _frames(values):
    arr = np.asarray(values, dtype=np.float64)
    if arr.ndim not in (1, 2):
        raise ConversionError("Input must be a single frame (1-D) or a stack of frames (2-D)")
    if arr.shape[-1] == 0:
        raise ConversionError("Frames must contain at least the gain term")
    return arr


def _apply(converter, values):
    if not converter.is_valid:
        raise ConversionError(f"{type(converter).__name__} is not valid")
    arr = _frames(values)
    single = arr.ndim == 1
    frames = arr[None, :] if single else arr

    output = np.empty_like(frames)
    flags = np.ones(frames.shape[0], dtype=bool)
    buffer = converter.Buffer()
    for idx, frame in enumerate(frames):
        flags[idx] = converter.run(frame, out=output[idx], buffer=buffer).is_stable

    if single:
        return output[0], bool(flags[0])
    return output, flags


def levinson_durbin(autocorrelation):
    """
    Compute LPC coefficients from autocorrelation.

    Args:
        autocorrelation: One frame ``r(0..M)`` or a 2-D array with one frame per row

    Returns:
        (coefficients, is_stable) for a single frame, or
        (coefficients, flags) with a boolean flag per row.
    """
    arr = _frames(autocorrelation)
    return _apply(LevinsonDurbinRecursion(arr.shape[-1] - 1), arr)


def lpc_to_parcor(linear_predictive_coefficients, gamma=1.0):
    """Convert LPC (or gamma-scaled generalized cepstrum) to PARCOR, frame-wise."""
    arr = _frames(linear_predictive_coefficients)
    converter = LinearPredictiveCoefficientsToParcorCoefficients(arr.shape[-1] - 1, gamma)
    return _apply(converter, arr)


def parcor_to_lpc(parcor_coefficients):
    """Convert PARCOR to LPC. Returns only the coefficients."""
    arr = _frames(parcor_coefficients)
    converter = ParcorCoefficientsToLinearPredictiveCoefficients(arr.shape[-1] - 1)
    if not converter.is_valid:
        raise ConversionError(f"{type(converter).__name__} is not valid")
    if arr.ndim == 1:
        return converter.run(arr)
    output = np.empty_like(arr)
    buffer = converter.Buffer()
    for idx, frame in enumerate(arr):
        converter.run(frame, out=output[idx], buffer=buffer)
    return output


def check_stability(linear_predictive_coefficients, margin=1e-16):
    """
    Stabilize LPC coefficients frame-wise.

    Returns:
        (corrected, is_stable) for a single frame, or (corrected, flags) for
        a stack. The flags describe the input coefficients.
    """
    arr = _frames(linear_predictive_coefficients)
    checker = LinearPredictiveCoefficientsStabilityCheck(arr.shape[-1] - 1, margin)
    return _apply(checker, arr)
