"""Drive the auto-tuning loop against the synthetic engine and write artifacts."""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

import matplotlib.pyplot as plt
import pandas as pd
from tqdm import tqdm

from .config import TuningConfig
from .orchestrator import TickReport, TuningOrchestrator
from .reporting import (
    SessionMetrics,
    build_trace,
    compute_session_metrics,
    summarize_session,
    summarize_status_counts,
)
from .synthetic_engine import SyntheticEngine

logger = logging.getLogger(__name__)


def _get_verbosity() -> int:
    """Get verbosity level from environment: 0=quiet, 1=normal, 2=verbose."""
    return int(os.environ.get("RQ_AUTOTUNE_VERBOSITY", "1"))


@dataclass(slots=True)
class SessionArtifacts:
    config: TuningConfig
    trace: pd.DataFrame
    metrics: SessionMetrics
    tables: str
    tunneling_requests: int
    output_dir: Optional[Path]
    plot_paths: List[Path]


def _plot_spectral_dimension(trace: pd.DataFrame, config: TuningConfig, out_path: Path) -> None:
    low, high = config.spectral_band
    plt.figure(figsize=(7.5, 5.0))
    plt.plot(trace["step"], trace["spectral_dimension"], "-", label="d_S (smoothed)", linewidth=2.0)
    plt.axhspan(low, high, color="green", alpha=0.15, label="Target band")
    plt.axhline(config.critical_spectral_dimension, color="red", linestyle="--", alpha=0.6, label="Critical")
    plt.axhline(config.high_spectral_dimension, color="orange", linestyle="--", alpha=0.6, label="Hyperbolic")
    plt.xlabel("Step")
    plt.ylabel("Spectral dimension")
    plt.title("Spectral dimension under auto-tuning")
    plt.grid(True, alpha=0.3)
    plt.legend()
    plt.tight_layout()
    plt.savefig(out_path)
    plt.close()


def _plot_parameters(trace: pd.DataFrame, out_path: Path) -> None:
    fig, axes = plt.subplots(3, 1, figsize=(7.5, 9.0), sharex=True)
    axes[0].semilogy(trace["step"], trace["coupling"], "-", linewidth=2.0)
    axes[0].set_ylabel("G")
    axes[1].semilogy(trace["step"], trace["decoherence"], "-", color="tab:purple", linewidth=2.0)
    axes[1].set_ylabel("Decoherence")
    axes[2].plot(trace["step"], trace["energy_fraction"] * 100.0, "-", color="tab:green", linewidth=2.0)
    axes[2].set_ylabel("Vacuum [%]")
    axes[2].set_xlabel("Step")
    for ax in axes:
        ax.grid(True, alpha=0.3)
    axes[0].set_title("Tuned parameters")
    fig.tight_layout()
    fig.savefig(out_path)
    plt.close(fig)


def run_synthetic_session(
    config: TuningConfig | None = None,
    steps: int = 5000,
    seed: int = 0,
    output_dir: str | Path | None = None,
    engine: SyntheticEngine | None = None,
) -> SessionArtifacts:
    """Run ``steps`` simulation steps with the orchestrator in the loop.

    When ``output_dir`` is given, the per-tick trace (CSV), summary tables
    and trajectory plots are written there.
    """
    config = config or TuningConfig()
    engine = engine or SyntheticEngine(seed=seed)
    orchestrator = TuningOrchestrator(config, engine)
    orchestrator.initialize()

    verbosity = _get_verbosity()
    disable_pbar = verbosity == 0

    reports: List[TickReport] = []
    tunneling_requests = 0
    for step in tqdm(range(steps), desc="Simulating", disable=disable_pbar, leave=False):
        engine.step(orchestrator.params)
        previous = orchestrator.last_report
        message = orchestrator.tick(step, engine.metrics())
        if orchestrator.last_report is not previous:
            reports.append(orchestrator.last_report)
        if message and verbosity >= 2:
            logger.info("step %d: %s", step, message)
        if orchestrator.tunneling_requested.take():
            tunneling_requests += 1

    trace = build_trace(reports)
    metrics = compute_session_metrics(trace, config.target_spectral_dimension, config.spectral_tolerance)
    tables = summarize_session(metrics) + "\n\n" + summarize_status_counts(trace)

    plot_paths: List[Path] = []
    artifact_dir: Optional[Path] = None
    if output_dir is not None:
        artifact_dir = Path(output_dir)
        artifact_dir.mkdir(parents=True, exist_ok=True)
        if verbosity >= 1:
            logger.info("Writing session artifacts to %s", artifact_dir)

        trace.to_csv(artifact_dir / "tuning_trace.csv", index=False)
        (artifact_dir / "summary.txt").write_text(tables + "\n" + orchestrator.summary() + "\n")

        if not trace.empty:
            plot_paths = [artifact_dir / "spectral_dimension.png", artifact_dir / "parameters.png"]
            _plot_spectral_dimension(trace, config, plot_paths[0])
            _plot_parameters(trace, plot_paths[1])

    return SessionArtifacts(
        config=config,
        trace=trace,
        metrics=metrics,
        tables=tables,
        tunneling_requests=tunneling_requests,
        output_dir=artifact_dir,
        plot_paths=plot_paths,
    )
