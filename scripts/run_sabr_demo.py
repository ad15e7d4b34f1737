#!/usr/bin/env python3
"""
SABR Bootstrap Demo Script

Demonstrates the term-structure calibration workflow:
1. Build smile quotes for a ladder of expiries
2. Bootstrap a fixed-beta SABR term structure
3. Bootstrap a cap strip quoted as cumulative prices
4. Inspect raw-quote sensitivities and diagnostics
5. Skip a non-convergent bucket instead of aborting
"""

import logging
import sys
from pathlib import Path

import numpy as np
import pandas as pd

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from sabrlib import (
    Bootstrapper,
    CalibrationConfig,
    FailurePolicy,
    HaganSabrModel,
    QuoteConvention,
    RawSmileQuotes,
    SabrParameters,
    buckets_from_frame,
    shifted_black_call,
)


STRIKES = np.array([0.01, 0.015, 0.02, 0.025, 0.03, 0.035, 0.04, 0.05])
FORWARD = 0.03


def print_section(title: str):
    """Print section header."""
    print(f"\n{'='*60}")
    print(f" {title}")
    print('='*60)


def market_term_structure():
    """Synthetic market parameters by expiry."""
    return {
        0.5: SabrParameters(alpha=0.045, beta=0.5, rho=-0.15, nu=0.55),
        1.0: SabrParameters(alpha=0.050, beta=0.5, rho=-0.20, nu=0.48),
        2.0: SabrParameters(alpha=0.052, beta=0.5, rho=-0.25, nu=0.42),
        5.0: SabrParameters(alpha=0.055, beta=0.5, rho=-0.30, nu=0.35),
    }


def demo_quotes_frame() -> pd.DataFrame:
    """Long-format Black vol quotes, as they would be loaded from CSV."""
    print_section("1. Market Quotes")

    model = HaganSabrModel()
    rows = []
    for expiry, params in market_term_structure().items():
        vols = model.volatilities(FORWARD, STRIKES, expiry, params)
        for strike, vol in zip(STRIKES, vols):
            rows.append({
                "expiry": expiry,
                "forward": FORWARD,
                "strike": strike,
                "quote": vol,
                "quote_type": "BLACK",
                "label": f"{expiry:g}Y",
            })

    quotes_df = pd.DataFrame(rows)
    print(quotes_df.pivot(index="strike", columns="expiry", values="quote").round(4))
    return quotes_df


def demo_bootstrap(quotes_df: pd.DataFrame):
    """Bootstrap the expiry ladder with beta fixed at 0.5."""
    print_section("2. Bootstrap Fixed-Beta Term Structure")

    buckets = buckets_from_frame(quotes_df)
    config = CalibrationConfig.fixed_beta(0.5, interpolation="linear")
    surface = Bootstrapper(config).calibrate(buckets)

    print(surface.to_frame().round(6).to_string(index=False))

    print("\nInterpolated parameters:")
    print("-" * 50)
    for expiry in [0.25, 0.75, 1.5, 3.0, 10.0]:
        p = surface.parameters(expiry)
        print(f"  T={expiry:5.2f}  alpha={p.alpha:.5f}  rho={p.rho:+.4f}  nu={p.nu:.4f}")

    return surface


def demo_sensitivities(surface):
    """Raw-quote sensitivities of the 1Y node."""
    print_section("3. Raw-Quote Sensitivities (1Y node)")

    sensitivity = surface.sensitivities()[(1.0, None)]
    table = pd.DataFrame(
        sensitivity,
        index=["d_alpha", "d_beta", "d_rho", "d_nu"],
        columns=[f"{k*100:.1f}%" for k in STRIKES],
    )
    print(table.round(4).to_string())

    print("\nDiagnostics:")
    print(surface.diagnostics_table()[["expiry", "state", "num_quotes", "rmse", "max_abs_error"]]
          .to_string(index=False))


def demo_strip():
    """Bootstrap caplet smiles from cumulative cap prices."""
    print_section("4. Cap Strip Bootstrap")

    model = HaganSabrModel()
    strikes = np.array([0.02, 0.025, 0.03, 0.035, 0.04, 0.045])
    periods = [
        (0.5, 0.030, 0.25 * 0.99, SabrParameters(alpha=0.050, beta=0.5, rho=-0.20, nu=0.50)),
        (1.0, 0.032, 0.25 * 0.98, SabrParameters(alpha=0.055, beta=0.5, rho=-0.25, nu=0.45)),
        (1.5, 0.033, 0.25 * 0.97, SabrParameters(alpha=0.058, beta=0.5, rho=-0.28, nu=0.40)),
    ]

    buckets = []
    strip = np.zeros(len(strikes))
    for expiry, forward, weight, params in periods:
        caplets = np.array([
            shifted_black_call(forward, k, expiry, model.volatility(forward, k, expiry, params), 0.0)
            for k in strikes
        ])
        strip = strip + weight * caplets
        buckets.append(RawSmileQuotes(
            expiry=expiry,
            forward=forward,
            strikes=strikes,
            quotes=strip.copy(),
            convention=QuoteConvention.price(),
            tenor=0.25,
            cumulative=True,
            period_weight=weight,
        ))

    surface = Bootstrapper(CalibrationConfig.fixed_beta(0.5)).calibrate(buckets)

    print(f"{'Expiry':>8} {'alpha':>10} {'true':>10} {'nu':>8} {'true':>8}")
    print("-" * 50)
    for node, (_, _, _, truth) in zip(surface.nodes, periods):
        print(f"{node.expiry:>8.2f} {node.parameters.alpha:>10.5f} {truth.alpha:>10.5f} "
              f"{node.parameters.nu:>8.4f} {truth.nu:>8.4f}")


def demo_skip_policy(quotes_df: pd.DataFrame):
    """A contradictory bucket is skipped under the SKIP policy."""
    print_section("5. Failure Policy")

    buckets = buckets_from_frame(quotes_df)
    bad = RawSmileQuotes(
        expiry=1.5,
        forward=FORWARD,
        strikes=[0.03, 0.03, 0.03],
        quotes=[0.2, 0.3, 0.4],
        label="bad",
    )
    buckets.insert(2, bad)

    config = CalibrationConfig.fixed_beta(0.5, failure_policy=FailurePolicy.SKIP)
    surface = Bootstrapper(config).calibrate(buckets)

    print(surface.diagnostics_table()[["expiry", "label", "state", "message"]].to_string(index=False))


def main():
    logging.basicConfig(level=logging.WARNING, format="%(levelname)s %(name)s: %(message)s")

    print("\n" + "="*60)
    print(" SABR TERM-STRUCTURE BOOTSTRAP DEMO")
    print("="*60)

    quotes_df = demo_quotes_frame()
    surface = demo_bootstrap(quotes_df)
    demo_sensitivities(surface)
    demo_strip()
    demo_skip_policy(quotes_df)

    print("\n" + "="*60)
    print(" DEMO COMPLETE")
    print("="*60)


if __name__ == "__main__":
    main()
