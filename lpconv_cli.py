#!/usr/bin/env python3
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
Frame-stream tools for linear prediction parameters.

Each tool reads double-precision frames of ``order + 1`` values from a file
(or stdin) and writes the converted frames to stdout:

    levdur    autocorrelation -> LPC
    lpc2par   LPC -> PARCOR
    par2lpc   PARCOR -> LPC
    lpccheck  LPC stability check and correction

Usage:
    python lpconv_cli.py levdur -m 20 data.acr > data.lpc
    python lpconv_cli.py lpc2par -m 20 -e 1 < data.lpc > data.rc
    python lpconv_cli.py lpccheck -m 20 -r 0.01 -x data.lpc > data.stable.lpc
"""

import argparse
import logging
import sys
from enum import IntEnum
from pathlib import Path
from typing import BinaryIO, Iterator, List, Optional

import numpy as np

from lpconv import (
    ConversionError,
    LevinsonDurbinRecursion,
    LinearPredictiveCoefficientsStabilityCheck,
    LinearPredictiveCoefficientsToParcorCoefficients,
    ParcorCoefficientsToLinearPredictiveCoefficients,
)

logger = logging.getLogger(__name__)

DEFAULT_NUM_ORDER = 25
DEFAULT_MARGIN = 1e-16


class WarningType(IntEnum):
    """What to do when a frame turns out to be unstable."""

    IGNORE = 0
    WARN = 1
    EXIT = 2


def read_frames(stream: BinaryIO, length: int) -> Iterator[np.ndarray]:
    """
    Yield consecutive float64 frames of ``length`` values from a binary stream.

    A trailing partial frame is dropped.
    """
    frame_bytes = length * np.dtype(np.float64).itemsize
    while True:
        chunk = stream.read(frame_bytes)
        if not chunk:
            return
        if len(chunk) < frame_bytes:
            logger.warning(
                f"Discarding incomplete trailing frame ({len(chunk)} of {frame_bytes} bytes)"
            )
            return
        yield np.frombuffer(chunk, dtype=np.float64).copy()


def write_frame(stream: BinaryIO, frame: np.ndarray) -> None:
    stream.write(np.ascontiguousarray(frame, dtype=np.float64).tobytes())


def _report_unstable(tool, frame_index, warning_type):
    """Apply the warning policy. Returns True if processing must stop."""
    if warning_type == WarningType.IGNORE:
        return False
    logger.warning(f"{tool}: {frame_index}th frame is unstable")
    return warning_type == WarningType.EXIT


def run_levdur(args, input_stream, output_stream) -> int:
    levinson_durbin = LevinsonDurbinRecursion(args.order)
    if not levinson_durbin.is_valid:
        logger.error("levdur: Failed to initialize LevinsonDurbinRecursion")
        return 1

    buffer = LevinsonDurbinRecursion.Buffer()
    coefficients = np.zeros(args.order + 1, dtype=np.float64)
    for frame_index, autocorrelation in enumerate(read_frames(input_stream, args.order + 1)):
        try:
            result = levinson_durbin.run(autocorrelation, out=coefficients, buffer=buffer)
        except ConversionError as e:
            logger.error(f"levdur: Failed to solve autocorrelation normal equations ({e})")
            return 1

        if not result.is_stable and _report_unstable("levdur", frame_index, args.warning_type):
            return 1
        write_frame(output_stream, coefficients)
    return 0


def run_lpc2par(args, input_stream, output_stream) -> int:
    if args.c is not None and args.c < 1:
        logger.error("lpc2par: The argument for the -c option must be a positive integer")
        return 1
    gamma = args.gamma if args.c is None else -1.0 / args.c
    to_parcor = LinearPredictiveCoefficientsToParcorCoefficients(args.order, gamma)
    if not to_parcor.is_valid:
        logger.error("lpc2par: Failed to initialize LinearPredictiveCoefficientsToParcorCoefficients")
        return 1

    buffer = LinearPredictiveCoefficientsToParcorCoefficients.Buffer()
    for frame_index, coefficients in enumerate(read_frames(input_stream, args.order + 1)):
        try:
            is_stable = to_parcor.run_in_place(coefficients, buffer=buffer)
        except ConversionError as e:
            logger.error(f"lpc2par: Failed to convert to PARCOR coefficients ({e})")
            return 1

        if not is_stable and _report_unstable("lpc2par", frame_index, args.warning_type):
            return 1
        write_frame(output_stream, coefficients)
    return 0


def run_par2lpc(args, input_stream, output_stream) -> int:
    to_lpc = ParcorCoefficientsToLinearPredictiveCoefficients(args.order)
    if not to_lpc.is_valid:
        logger.error("par2lpc: Failed to initialize ParcorCoefficientsToLinearPredictiveCoefficients")
        return 1

    buffer = ParcorCoefficientsToLinearPredictiveCoefficients.Buffer()
    for coefficients in read_frames(input_stream, args.order + 1):
        try:
            to_lpc.run_in_place(coefficients, buffer=buffer)
        except ConversionError as e:
            logger.error(f"par2lpc: Failed to convert to linear predictive coefficients ({e})")
            return 1
        write_frame(output_stream, coefficients)
    return 0


def run_lpccheck(args, input_stream, output_stream) -> int:
    checker = LinearPredictiveCoefficientsStabilityCheck(args.order, args.margin)
    if not checker.is_valid:
        logger.error("lpccheck: Failed to initialize LinearPredictiveCoefficientsStabilityCheck")
        return 1

    buffer = LinearPredictiveCoefficientsStabilityCheck.Buffer()
    corrected = np.zeros(args.order + 1, dtype=np.float64)
    for frame_index, coefficients in enumerate(read_frames(input_stream, args.order + 1)):
        try:
            result = checker.run(
                coefficients,
                correct=args.modify,
                out=corrected,
                buffer=buffer,
            )
        except ConversionError as e:
            logger.error(f"lpccheck: Failed to check stability ({e})")
            return 1

        if not result.is_stable and _report_unstable("lpccheck", frame_index, args.warning_type):
            return 1
        write_frame(output_stream, corrected if args.modify else coefficients)
    return 0


def _non_negative_int(value):
    number = int(value)
    if number < 0:
        raise argparse.ArgumentTypeError("must be a non-negative integer")
    return number


def _add_common_arguments(parser, with_warning=True):
    parser.add_argument(
        "-m",
        dest="order",
        type=_non_negative_int,
        default=DEFAULT_NUM_ORDER,
        help=f"Order of coefficients (default: {DEFAULT_NUM_ORDER})",
    )
    if with_warning:
        parser.add_argument(
            "-e",
            dest="warning_type",
            type=int,
            choices=[w.value for w in WarningType],
            default=WarningType.IGNORE.value,
            help="Warning type of unstable index: 0 no warning, 1 log the index, "
                 "2 log the index and exit immediately (default: 0)",
        )
    parser.add_argument(
        "infile",
        nargs="?",
        type=Path,
        default=None,
        help="Input file of double-precision frames (default: stdin)",
    )


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Convert and stabilize linear prediction parameters frame by frame"
    )
    parser.add_argument(
        "-v",
        "--verbose",
        action="store_true",
        help="Enable debug logging",
    )
    subparsers = parser.add_subparsers(dest="tool", required=True)

    levdur = subparsers.add_parser(
        "levdur",
        help="Solve autocorrelation normal equations by Levinson-Durbin recursion",
    )
    _add_common_arguments(levdur)
    levdur.set_defaults(handler=run_levdur)

    lpc2par = subparsers.add_parser(
        "lpc2par",
        help="Convert linear predictive coefficients to PARCOR coefficients",
    )
    _add_common_arguments(lpc2par)
    gamma_group = lpc2par.add_mutually_exclusive_group()
    gamma_group.add_argument(
        "-g",
        dest="gamma",
        type=float,
        default=1.0,
        help="Gamma of generalized cepstrum, |g| <= 1 (default: 1.0)",
    )
    gamma_group.add_argument(
        "-c",
        dest="c",
        type=int,
        default=None,
        help="Gamma of generalized cepstrum given as g = -1 / c, c >= 1",
    )
    lpc2par.set_defaults(handler=run_lpc2par)

    par2lpc = subparsers.add_parser(
        "par2lpc",
        help="Convert PARCOR coefficients to linear predictive coefficients",
    )
    _add_common_arguments(par2lpc, with_warning=False)
    par2lpc.set_defaults(handler=run_par2lpc)

    lpccheck = subparsers.add_parser(
        "lpccheck",
        help="Check stability of linear predictive coefficients",
    )
    _add_common_arguments(lpccheck)
    lpccheck.add_argument(
        "-r",
        dest="margin",
        type=float,
        default=DEFAULT_MARGIN,
        help=f"Margin from the unit circle, 0 <= r < 1 (default: {DEFAULT_MARGIN})",
    )
    lpccheck.add_argument(
        "-x",
        dest="modify",
        action="store_true",
        help="Output corrected coefficients instead of the input",
    )
    lpccheck.set_defaults(handler=run_lpccheck)

    return parser


def main(argv: Optional[List[str]] = None) -> int:
    """Main entry point for the frame-stream tools."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
    )

    output_stream = sys.stdout.buffer
    if args.infile is None:
        status = args.handler(args, sys.stdin.buffer, output_stream)
    else:
        try:
            input_stream = open(args.infile, "rb")
        except OSError as e:
            logger.error(f"{args.tool}: Cannot open file {args.infile} ({e})")
            return 1
        with input_stream:
            status = args.handler(args, input_stream, output_stream)
    output_stream.flush()
    return status


if __name__ == "__main__":
    sys.exit(main())
