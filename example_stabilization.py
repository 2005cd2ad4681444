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
Example demonstrating LPC stabilization
=======================================

An all-pole model is estimated from a synthetic vowel-like signal, one
reflection coefficient is pushed outside the unit circle, and the stability
check pulls it back at several margins.

Margins:
  - 0.001: barely inside the unit circle, sharpest resonance
  - 0.05:  moderate damping
  - 0.2:   strong damping, visibly flatter envelope
"""

import matplotlib.pyplot as plt
import numpy as np
import soundfile as sf
from scipy import signal

from lpconv import (
    LevinsonDurbinRecursion,
    LinearPredictiveCoefficientsStabilityCheck,
    lpc_to_parcor,
    parcor_to_lpc,
)
from test_utils import autocorrelation, generate_ar_process


def envelope_db(lpc, n_points=1024, sample_rate=16000):
    """Log-magnitude response of K / (1 + sum a(i) z^-i)."""
    freqs, response = signal.freqz(
        [lpc[0]], np.concatenate(([1.0], lpc[1:])), worN=n_points, fs=sample_rate
    )
    return freqs, 20 * np.log10(np.abs(response) + 1e-12)


def demonstrate_stabilization(order=12, sample_rate=16000):
    print("=" * 70)
    print("LPC Stabilization Demonstration")
    print("=" * 70)

    # Step 1: Analyse a synthetic signal
    print("\nStep 1: Estimating an all-pole model...")
    true_lpc = parcor_to_lpc(np.concatenate(([1.0], 0.85 * (-1.0) ** np.arange(order))))[1:]
    audio = generate_ar_process(true_lpc, n_samples=sample_rate, seed=7)
    result = LevinsonDurbinRecursion(order).run(autocorrelation(audio, order))
    print(f"  Order: {order}, stable: {result.is_stable}, gain: {result.coefficients[0]:.4f}")

    # Step 2: Break it
    print("\nStep 2: Pushing k(3) outside the unit circle...")
    parcor, _ = lpc_to_parcor(result.coefficients)
    parcor[3] = 1.3
    unstable = parcor_to_lpc(parcor)
    _, is_stable = lpc_to_parcor(unstable)
    print(f"  Stable after perturbation: {is_stable}")

    # Step 3: Repair at several margins
    print("\nStep 3: Correcting at different margins...")
    margins = [0.001, 0.05, 0.2]
    corrected = {}
    for margin in margins:
        checker = LinearPredictiveCoefficientsStabilityCheck(order, margin)
        check = checker.run(unstable)
        corrected[margin] = check.coefficients
        print(f"  margin={margin:<6} was stable: {check.is_stable}")

    # Step 4: Listen
    print("\nStep 4: Saving filtered noise...")
    excitation = np.random.default_rng(3).normal(0.0, 0.1, size=sample_rate)
    for margin, lpc in corrected.items():
        rendered = signal.lfilter([lpc[0]], np.concatenate(([1.0], lpc[1:])), excitation)
        rendered = rendered / (np.max(np.abs(rendered)) + 1e-10) * 0.8
        filename = f"stabilized_margin_{margin}.wav"
        sf.write(filename, rendered, sample_rate)
        print(f"  Saved {filename}")

    # Step 5: Visualize
    print("\nStep 5: Creating visualization...")
    fig, axes = plt.subplots(1, 2, figsize=(15, 5))
    fig.suptitle("LPC Stabilization", fontsize=14)

    freqs, original_db = envelope_db(result.coefficients, sample_rate=sample_rate)
    axes[0].plot(freqs, original_db, "b-", alpha=0.7, label="Estimated")
    for margin, lpc in corrected.items():
        _, db = envelope_db(lpc, sample_rate=sample_rate)
        axes[0].plot(freqs, db, alpha=0.7, label=f"Corrected (margin={margin})")
    axes[0].set_title("Spectral Envelope")
    axes[0].set_xlabel("Frequency (Hz)")
    axes[0].set_ylabel("Magnitude (dB)")
    axes[0].grid(True, alpha=0.3)
    axes[0].legend()

    indices = np.arange(1, order + 1)
    axes[1].stem(indices, parcor[1:], linefmt="r-", markerfmt="ro", basefmt=" ", label="Perturbed")
    for margin, lpc in corrected.items():
        reflection, _ = lpc_to_parcor(lpc)
        axes[1].plot(indices, reflection[1:], "o--", alpha=0.7, label=f"margin={margin}")
    axes[1].axhline(1.0, color="k", linewidth=0.5)
    axes[1].axhline(-1.0, color="k", linewidth=0.5)
    axes[1].set_title("Reflection Coefficients")
    axes[1].set_xlabel("Index")
    axes[1].grid(True, alpha=0.3)
    axes[1].legend()

    plt.tight_layout()
    plt.savefig("stabilization_analysis.png", dpi=150, bbox_inches="tight")
    print("  Saved visualization: stabilization_analysis.png")

    return result.coefficients, unstable, corrected


if __name__ == "__main__":
    demonstrate_stabilization()
