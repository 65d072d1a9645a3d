"""
Report generation for differential expression results.

Supports:
- TSV: ranked gene tables (tab-delimited, unquoted, gene ID first)
- PNG: MA plots and PCA quality-control plots (matplotlib)
- HTML: interactive MA plots (plotly)
"""

import csv
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence, Union

import matplotlib

matplotlib.use("Agg")

import matplotlib.pyplot as plt
import numpy as np
import pandas as pd
import plotly.graph_objects as go
from sklearn.decomposition import PCA

from .engine import DEResult
from .normalization import log_cpm

logger = logging.getLogger(__name__)

COLORS = {
    "up": "#e74c3c",
    "down": "#3498db",
    "neutral": "#95a5a6",
}


@dataclass(frozen=True)
class DESummary:
    """Counts of significant genes at one FDR threshold."""

    alpha: float
    n_up: int
    n_down: int
    n_significant: int

    @property
    def ratio(self) -> float:
        """up / down; ``inf`` or ``nan`` when there are no down genes."""
        with np.errstate(divide="ignore", invalid="ignore"):
            return float(np.float64(self.n_up) / np.float64(self.n_down))

    @property
    def caption(self) -> str:
        return f"up: {self.n_up}, down: {self.n_down} (FDR < {self.alpha:g})"


def significant_mask(result: DEResult, alpha: float) -> pd.Series:
    padj = result.table[result.padj_col]
    return (padj < alpha).fillna(False).astype(bool)


def summarize(result: DEResult, alpha: float) -> DESummary:
    """Count up- and down-regulated genes at FDR ``alpha``."""
    significant = significant_mask(result, alpha)
    effect = result.table[result.effect_col]
    return DESummary(
        alpha=alpha,
        n_up=int((significant & (effect > 0)).sum()),
        n_down=int((significant & (effect < 0)).sum()),
        n_significant=int(significant.sum()),
    )


def rank_table(table: pd.DataFrame, padj_col: str, effect_col: str) -> pd.DataFrame:
    """Sort by adjusted p-value ascending, ties by effect descending, NA last."""
    return table.sort_values(
        [padj_col, effect_col],
        ascending=[True, False],
        na_position="last",
        kind="mergesort",
    )


def write_table(result: DEResult, path: Union[str, Path]) -> Path:
    """Write the ranked result table as unquoted TSV with the gene ID first."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    ranked = rank_table(result.table, result.padj_col, result.effect_col)
    ranked.to_csv(
        path,
        sep="\t",
        quoting=csv.QUOTE_NONE,
        index=True,
        index_label="gene_id",
        na_rep="NA",
    )
    logger.info("Wrote %d genes to %s", len(ranked), path)
    return path


def ma_plot(
    result: DEResult,
    path: Union[str, Path],
    title: str,
    alpha: float,
    summary: Optional[DESummary] = None,
) -> Path:
    """Scatter of mean abundance vs log fold-change, significant genes in red."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    summary = summary or summarize(result, alpha)

    x = result.log_mean
    y = result.table[result.effect_col].astype(float)
    finite = np.isfinite(x) & np.isfinite(y)
    significant = significant_mask(result, alpha) & finite

    fig, ax = plt.subplots(figsize=(7, 5))
    ax.scatter(x[finite & ~significant], y[finite & ~significant], s=4, c=COLORS["neutral"], alpha=0.6, linewidths=0)
    ax.scatter(x[significant], y[significant], s=6, c=COLORS["up"], alpha=0.9, linewidths=0, label=f"FDR < {alpha:g}")
    ax.axhline(0, color="black", linewidth=0.8)
    ax.set_xlabel("mean abundance (log2)")
    ax.set_ylabel("log2 fold change")
    ax.set_title(title)
    ax.text(0.01, 0.99, summary.caption, transform=ax.transAxes, va="top", ha="left", fontsize=9)
    if significant.any():
        ax.legend(loc="lower right", fontsize=8, frameon=False)
    fig.tight_layout()
    fig.savefig(path, dpi=150)
    plt.close(fig)
    logger.info("Wrote MA plot %s", path)
    return path


def interactive_ma_plot(
    result: DEResult,
    path: Union[str, Path],
    title: str,
    alpha: float,
    summary: Optional[DESummary] = None,
) -> Path:
    """Interactive MA plot with gene IDs (and symbols when present) on hover."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    summary = summary or summarize(result, alpha)

    table = result.table
    significant = significant_mask(result, alpha)
    labels = table.index.astype(str)
    if "symbol" in table.columns:
        labels = [f"{g} ({s})" if s else g for g, s in zip(labels, table["symbol"].fillna(""))]
    labels = pd.Series(list(labels), index=table.index)

    fig = go.Figure()
    for name, mask, color in (
        ("not significant", ~significant, COLORS["neutral"]),
        (f"FDR < {alpha:g}", significant, COLORS["up"]),
    ):
        fig.add_trace(
            go.Scattergl(
                x=result.log_mean[mask],
                y=table.loc[mask, result.effect_col],
                mode="markers",
                name=name,
                text=labels[mask],
                marker=dict(color=color, size=4),
                hovertemplate="%{text}<br>mean=%{x:.2f}<br>logFC=%{y:.2f}<extra></extra>",
            )
        )
    fig.update_layout(
        title=f"{title}<br><sup>{summary.caption}</sup>",
        xaxis_title="mean abundance (log2)",
        yaxis_title="log2 fold change",
        template="plotly_white",
    )
    fig.write_html(str(path), include_plotlyjs=True)
    return path


def pca_plot(
    counts: pd.DataFrame,
    labels: Sequence[str],
    path: Union[str, Path],
    title: str,
    n_top: int = 500,
    pseudocount: float = 2.0,
) -> Path:
    """PCA of log2-CPM over the most variable genes, coloured by condition."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)

    expressed = counts.loc[counts.sum(axis=1) > 0]
    logged = log_cpm(expressed, pseudocount)
    top = logged.var(axis=1).sort_values(ascending=False).index[:n_top]
    n_components = min(2, logged.shape[1], len(top))
    pca = PCA(n_components=n_components)
    coords = pca.fit_transform(logged.loc[top].T.to_numpy())
    if coords.shape[1] < 2:
        coords = np.column_stack([coords, np.zeros(len(coords))])
    variance = list(pca.explained_variance_ratio_) + [0.0] * (2 - n_components)

    fig, ax = plt.subplots(figsize=(6, 5))
    for label in pd.unique(pd.Series(list(labels))):
        idx = [i for i, lab in enumerate(labels) if lab == label]
        ax.scatter(coords[idx, 0], coords[idx, 1], label=label, s=40)
    for i, sample in enumerate(counts.columns):
        ax.annotate(sample, (coords[i, 0], coords[i, 1]), fontsize=6, alpha=0.7)
    ax.set_xlabel(f"PC1 ({variance[0]:.1%})")
    ax.set_ylabel(f"PC2 ({variance[1]:.1%})")
    ax.set_title(title)
    ax.legend(fontsize=8, frameon=False)
    fig.tight_layout()
    fig.savefig(path, dpi=150)
    plt.close(fig)
    logger.info("Wrote PCA plot %s", path)
    return path
