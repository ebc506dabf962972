"""Reporting utilities for auto-tuning sessions."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

import numpy as np
import pandas as pd
from tabulate import tabulate

from .orchestrator import TickReport

TRACE_COLUMNS = [
    "step",
    "spectral_dimension",
    "confidence",
    "coupling",
    "decoherence",
    "edge_trial_prob",
    "temperature",
    "threshold_sigma",
    "energy_status",
    "energy_fraction",
    "cluster_status",
    "coupling_emergency",
    "published",
    "short_circuited",
    "diagnostics",
]


def trace_row(report: TickReport) -> dict:
    params = report.params
    return {
        "step": report.step,
        "spectral_dimension": report.spectral_dimension,
        "confidence": report.confidence,
        "coupling": params.coupling,
        "decoherence": params.decoherence,
        "edge_trial_prob": params.edge_trial_prob,
        "temperature": params.temperature,
        "threshold_sigma": params.threshold_sigma,
        "energy_status": report.energy_status.name,
        "energy_fraction": report.energy_fraction,
        "cluster_status": report.cluster_status.name,
        "coupling_emergency": report.coupling_emergency,
        "published": report.published,
        "short_circuited": report.short_circuited,
        "diagnostics": "; ".join(report.diagnostics),
    }


def build_trace(reports: Iterable[TickReport]) -> pd.DataFrame:
    """One row per qualifying tick, indexed in step order."""
    rows = [trace_row(report) for report in reports]
    return pd.DataFrame(rows, columns=TRACE_COLUMNS)


@dataclass(frozen=True)
class SessionMetrics:
    ticks: int
    adjustments: int
    short_circuits: int
    final_spectral_dimension: float
    mean_abs_deviation: float
    in_band_share: float
    final_coupling: float
    final_decoherence: float
    final_energy_fraction: float
    tunneling_events: int


def compute_session_metrics(trace: pd.DataFrame, target: float, tolerance: float) -> SessionMetrics:
    if trace.empty:
        return SessionMetrics(0, 0, 0, float("nan"), float("nan"), 0.0, float("nan"), float("nan"), float("nan"), 0)

    deviation = np.abs(trace["spectral_dimension"].to_numpy(dtype=float) - target)
    last = trace.iloc[-1]
    tunneling = int(trace["diagnostics"].str.contains("TOPOLOGY TUNNELING", regex=False).sum())
    return SessionMetrics(
        ticks=len(trace),
        adjustments=int(trace["published"].sum()),
        short_circuits=int(trace["short_circuited"].sum()),
        final_spectral_dimension=float(last["spectral_dimension"]),
        mean_abs_deviation=float(np.mean(deviation)),
        in_band_share=float(np.mean(deviation <= tolerance)),
        final_coupling=float(last["coupling"]),
        final_decoherence=float(last["decoherence"]),
        final_energy_fraction=float(last["energy_fraction"]),
        tunneling_events=tunneling,
    )


def summarize_session(metrics: SessionMetrics) -> str:
    rows = [
        ("Tuning ticks", metrics.ticks),
        ("Ticks with adjustments", metrics.adjustments),
        ("Energy short-circuits", metrics.short_circuits),
        ("Topology tunneling events", metrics.tunneling_events),
        ("Final d_S", f"{metrics.final_spectral_dimension:.3f}"),
        ("Mean |d_S - target|", f"{metrics.mean_abs_deviation:.3f}"),
        ("Ticks within tolerance [%]", f"{metrics.in_band_share * 100.0:.1f}"),
        ("Final G", f"{metrics.final_coupling:.4f}"),
        ("Final decoherence", f"{metrics.final_decoherence:.4f}"),
        ("Final vacuum fraction [%]", f"{metrics.final_energy_fraction * 100.0:.1f}"),
    ]
    return tabulate(rows, headers=["Metric", "Value"], tablefmt="github")


def summarize_status_counts(trace: pd.DataFrame) -> str:
    """Cross-tabulate cluster status against energy status over all ticks."""
    if trace.empty:
        return "No tuning ticks recorded."
    counts = pd.crosstab(trace["cluster_status"], trace["energy_status"])
    return tabulate(counts, headers="keys", tablefmt="github")
