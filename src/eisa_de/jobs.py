"""Cluster job submission: one SLURM batch job per dataset identifier."""

import logging
import subprocess
from pathlib import Path
from typing import Callable, Iterable, List, Sequence, Tuple, Union

logger = logging.getLogger(__name__)

DEFAULT_SCRIPT = "02QuasRAlignmentAndCounting.sbatch"
DEFAULT_JOB_PREFIX = "MAPCOUNT"
DEFAULT_LOG_DIR = Path("log")
# Shell convention for "command not found".
LAUNCH_FAILED = 127


def read_dataset_ids(path: Union[str, Path]) -> List[str]:
    """One identifier per line; blank lines are skipped."""
    with Path(path).open("r", encoding="utf-8") as fh:
        return [line.strip() for line in fh if line.strip()]


def sbatch_command(
    dataset: str,
    script: str = DEFAULT_SCRIPT,
    log_dir: Path = DEFAULT_LOG_DIR,
    job_prefix: str = DEFAULT_JOB_PREFIX,
) -> List[str]:
    return [
        "sbatch",
        f"--export=GSE={dataset}",
        f"--job-name={job_prefix}-{dataset}",
        f"--output={Path(log_dir) / f'{dataset}_aligncount.out'}",
        script,
    ]


def submit_jobs(
    datasets: Iterable[str],
    script: str = DEFAULT_SCRIPT,
    log_dir: Path = DEFAULT_LOG_DIR,
    job_prefix: str = DEFAULT_JOB_PREFIX,
    runner: Callable[[Sequence[str]], "subprocess.CompletedProcess"] = subprocess.run,
) -> List[Tuple[str, int]]:
    """Submit one job per dataset and return ``(dataset, exit status)`` pairs.

    A failed submission is logged and does not stop the remaining ones.
    When ``sbatch`` cannot be started at all the status is ``LAUNCH_FAILED``.
    """
    statuses = []
    for dataset in datasets:
        command = sbatch_command(dataset, script, log_dir, job_prefix)
        logger.info("Submitting job for %s: %s", dataset, " ".join(command))
        try:
            returncode = runner(command).returncode
        except OSError as e:
            logger.error("Could not run sbatch for %s: %s", dataset, e)
            statuses.append((dataset, LAUNCH_FAILED))
            continue
        if returncode != 0:
            logger.warning("sbatch exited with %d for %s", returncode, dataset)
        statuses.append((dataset, returncode))
    return statuses
