from __future__ import annotations

import logging
from pathlib import Path
from typing import Optional, Tuple

import click

from eisa_de.config import EngineConfig, RunConfig
from eisa_de.errors import EisaError
from eisa_de.jobs import DEFAULT_JOB_PREFIX, DEFAULT_SCRIPT, read_dataset_ids, submit_jobs
from eisa_de.labels import condition_labels
from eisa_de.pipeline import run_pipeline


@click.group()
@click.option("--verbose", is_flag=True, help="Enable verbose logging.")
def cli(verbose: bool) -> None:
    """Exon-intron split and differential expression analysis of count tables."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )


@cli.command("run")
@click.argument("dataset")
@click.option(
    "--input-dir",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Directory holding {dataset}_ExonicCounts.txt and {dataset}_IntronicCounts.txt "
    "[default: $EISA_INPUT_DIR or .]",
)
@click.option(
    "--output-dir",
    type=click.Path(path_type=Path, file_okay=False),
    default=None,
    help="Directory for tables and plots [default: $EISA_OUTPUT_DIR or .]",
)
@click.option(
    "--conditions",
    nargs=2,
    type=str,
    default=None,
    metavar="REFERENCE TREATMENT",
    help="Condition labels to compare. Defaults to the first two labels in sample order.",
)
@click.option("--alpha", type=click.FloatRange(0, 1, min_open=True, max_open=True), default=None, help="FDR threshold [default: 0.05]")
@click.option("--pseudocount", type=click.FloatRange(min=0), default=2.0, show_default=True)
@click.option(
    "--stat-framework",
    type=click.Choice(["lrt", "qlf"]),
    default="lrt",
    show_default=True,
    help="Likelihood-ratio or quasi-likelihood F-test for the GLM analyses.",
)
@click.option("--no-model-samples", is_flag=True, help="Do not block on sample in the EISA design.")
@click.option("--no-recalc-norm-factors", is_flag=True, help="Compute TMM factors before gene filtering.")
@click.option("--no-filter", is_flag=True, help="Test every gene (skip the expression filter).")
@click.option("--full-formula", default=EngineConfig.full_formula, show_default=True, help="Custom GLM full model.")
@click.option("--reduced-formula", default=EngineConfig.reduced_formula, show_default=True, help="Custom GLM reduced model.")
@click.option("--no-annotate", is_flag=True, help="Skip BioMart gene symbol annotation.")
@click.option("--html", "interactive", is_flag=True, help="Also write interactive HTML MA plots.")
def run_command(
    dataset: str,
    input_dir: Optional[Path],
    output_dir: Optional[Path],
    conditions: Optional[Tuple[str, str]],
    alpha: Optional[float],
    pseudocount: float,
    stat_framework: str,
    no_model_samples: bool,
    no_recalc_norm_factors: bool,
    no_filter: bool,
    full_formula: str,
    reduced_formula: str,
    no_annotate: bool,
    interactive: bool,
) -> None:
    """Run EISA, custom GLM and DESeq2 analyses for DATASET."""
    base = RunConfig.from_env(dataset, input_dir=input_dir, output_dir=output_dir)
    engine = EngineConfig(
        alpha=alpha if alpha is not None else base.engine.alpha,
        pseudocount=pseudocount,
        recalc_norm_factors=not no_recalc_norm_factors,
        stat_framework=stat_framework,
        model_samples=not no_model_samples,
        gene_selection="none" if no_filter else "filter_by_expr",
        full_formula=full_formula,
        reduced_formula=reduced_formula,
    )
    config = RunConfig(
        dataset=dataset,
        input_dir=base.input_dir,
        output_dir=base.output_dir,
        conditions=tuple(conditions) if conditions else None,
        engine=engine,
        annotate=not no_annotate,
        interactive_plots=interactive,
    )
    config.output_dir.mkdir(parents=True, exist_ok=True)

    try:
        result = run_pipeline(config)
    except (EisaError, ValueError) as exc:
        raise click.ClickException(f"{type(exc).__name__}: {exc}") from exc

    click.echo(f"{dataset}: {result.treatment} vs {result.reference}")
    for sample, value in result.intron_fraction.items():
        click.echo(f"  intron fraction {sample}: {value:.3f}")
    for method, summary in result.summaries.items():
        click.echo(f"  {method}: {summary.n_up} up, {summary.n_down} down (ratio {summary.ratio:.3g})")
    click.echo(f"Wrote {len(result.files)} files to {config.output_dir}")


@cli.command("labels")
@click.argument("sample_ids", nargs=-1, required=True)
def labels_command(sample_ids: Tuple[str, ...]) -> None:
    """Print the condition label of each SAMPLE_ID."""
    for sample, label in zip(sample_ids, condition_labels(sample_ids)):
        click.echo(f"{sample}\t{label}")


@cli.command("submit")
@click.argument("dataset_list", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--script", default=DEFAULT_SCRIPT, show_default=True, help="sbatch script to submit.")
@click.option(
    "--log-dir",
    type=click.Path(path_type=Path, file_okay=False),
    default=Path("log"),
    show_default=True,
)
@click.option("--job-prefix", default=DEFAULT_JOB_PREFIX, show_default=True)
def submit_command(dataset_list: Path, script: str, log_dir: Path, job_prefix: str) -> None:
    """Submit one cluster job per identifier in DATASET_LIST."""
    for dataset, status in submit_jobs(read_dataset_ids(dataset_list), script, log_dir, job_prefix):
        click.echo(f"submitting job for {dataset}: exit {status}")


def main() -> None:  # pragma: no cover
    cli()


if __name__ == "__main__":  # pragma: no cover
    main()
