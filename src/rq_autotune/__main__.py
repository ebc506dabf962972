"""Command-line entry point for running an auto-tuning session on the synthetic engine."""

from __future__ import annotations

import argparse
import logging
import os
import sys
import time
from pathlib import Path

from .analysis import SessionArtifacts, run_synthetic_session
from .config import PRESETS


def format_runtime(seconds: float) -> str:
    """Render a wall-clock runtime as ``5.00s``, ``2m 5.0s`` or ``2h 1m``."""
    if seconds < 60:
        return f"{seconds:.2f}s"
    minutes, secs = divmod(seconds, 60)
    if minutes < 60:
        return f"{int(minutes)}m {secs:.1f}s"
    hours, minutes = divmod(int(minutes), 60)
    return f"{hours}h {minutes}m"


def print_banner(title: str, subtitle: str | None = None, min_width: int = 60) -> None:
    """Print a session banner, widened to fit the longest line."""
    lines = [title] if subtitle is None else [title, subtitle]
    rule = "=" * max(min_width, max(len(line) for line in lines) + 4)
    print("\n" + rule)
    for line in lines:
        print(f"  {line}")
    print(rule)


def print_summary(artifacts: SessionArtifacts, preset: str, elapsed: float, verbose: bool) -> None:
    """Print session summary statistics."""
    print_banner("Session Summary")

    metrics = artifacts.metrics
    print(f"\nRuntime: {format_runtime(elapsed)}")
    print(f"Preset: {preset}")

    print("\n--- Convergence ---")
    print(f"  Final d_S:                  {metrics.final_spectral_dimension:.3f}")
    print(f"  Target d_S:                 {artifacts.config.target_spectral_dimension:.1f}")
    print(f"  Ticks within tolerance:     {metrics.in_band_share * 100.0:.1f}%")

    print("\n--- Interventions ---")
    print(f"  Tuning ticks:               {metrics.ticks}")
    print(f"  Ticks with adjustments:     {metrics.adjustments}")
    print(f"  Energy short-circuits:      {metrics.short_circuits}")
    print(f"  Tunneling requests:         {artifacts.tunneling_requests}")

    if verbose:
        print("\n--- Session Tables ---")
        print(artifacts.tables)


def validate_output_dir(output_dir: Path) -> None:
    """Validate that output directory can be created and is writable."""
    if output_dir.exists() and not output_dir.is_dir():
        print(
            f"Error: Output path exists but is not a directory: {output_dir}\n"
            f"Please specify a different path or remove the existing file.",
            file=sys.stderr,
        )
        sys.exit(1)


def configure_logging(verbosity: int) -> None:
    level = {0: logging.ERROR, 1: logging.WARNING, 2: logging.INFO}.get(verbosity, logging.DEBUG)
    logging.basicConfig(level=level, format="%(levelname)s %(name)s: %(message)s")


def main() -> None:
    parser = argparse.ArgumentParser(
        description="Run the RQ auto-tuning loop against a synthetic simulation engine.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  %(prog)s                              # 5000 steps with default settings
  %(prog)s --preset aggressive          # Faster, stronger corrections
  %(prog)s --steps 20000 --seed 7       # Longer, reproducible run
  %(prog)s --output-dir results/        # Write trace CSV and plots
  %(prog)s --quiet                      # Minimal output
        """,
    )
    parser.add_argument("--steps", type=int, default=5000, help="Simulation steps to run (default: 5000).")
    parser.add_argument(
        "--preset",
        choices=sorted(PRESETS),
        default="default",
        help="Tuning configuration preset (default: default).",
    )
    parser.add_argument("--seed", type=int, default=0, help="Seed for the synthetic engine (default: 0).")
    parser.add_argument(
        "--output-dir",
        type=Path,
        default=None,
        help="Directory where the trace, tables and plots will be written (default: none).",
    )
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose output with per-tick diagnostics.",
    )
    parser.add_argument(
        "-q", "--quiet",
        action="store_true",
        help="Suppress all output except errors and final results.",
    )
    args = parser.parse_args()

    if args.steps <= 0:
        parser.error(f"--steps must be positive, got {args.steps}")
    if args.output_dir is not None:
        validate_output_dir(args.output_dir)

    # Set global verbosity level (used by other modules)
    if args.quiet:
        os.environ["RQ_AUTOTUNE_VERBOSITY"] = "0"
    elif args.verbose:
        os.environ["RQ_AUTOTUNE_VERBOSITY"] = "2"
    else:
        os.environ["RQ_AUTOTUNE_VERBOSITY"] = "1"
    configure_logging(int(os.environ["RQ_AUTOTUNE_VERBOSITY"]))

    if not args.quiet:
        print_banner(
            "RQ Auto-Tuning Synthetic Session",
            f"steps={args.steps} preset={args.preset} seed={args.seed}",
        )
        if args.output_dir is not None:
            print(f"Output directory: {args.output_dir.resolve()}")

    start_time = time.time()

    try:
        config = PRESETS[args.preset]()
        artifacts = run_synthetic_session(
            config=config,
            steps=args.steps,
            seed=args.seed,
            output_dir=args.output_dir,
        )
        elapsed = time.time() - start_time

        if args.quiet:
            print(f"{artifacts.metrics.final_spectral_dimension:.4f}")
        else:
            print_summary(artifacts, args.preset, elapsed, args.verbose)

            if not args.verbose:
                print("\n" + artifacts.tables)

            print_banner("Session Complete")
            if artifacts.output_dir is not None:
                print(f"Results written to: {artifacts.output_dir.resolve()}\n")

    except ValueError as e:
        elapsed = time.time() - start_time
        print(
            f"\nError after {format_runtime(elapsed)}:\n"
            f"Invalid configuration: {e}",
            file=sys.stderr,
        )
        sys.exit(1)
    except Exception as e:
        elapsed = time.time() - start_time
        print(
            f"\nError after {format_runtime(elapsed)}: {e}\n"
            f"For help, run: python -m rq_autotune --help",
            file=sys.stderr,
        )
        sys.exit(1)


if __name__ == "__main__":
    main()
