"""Run and engine configuration.

All settings travel as immutable dataclasses handed to each component;
nothing in the package reads process-wide state after ``RunConfig`` has
been built.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Literal, Optional, Tuple

from dotenv import load_dotenv

StatFramework = Literal["lrt", "qlf"]
GeneSelection = Literal["filter_by_expr", "none"]

DEFAULT_FULL_FORMULA = "C(batch) + treat + exon + exon_treat"
DEFAULT_REDUCED_FORMULA = "C(batch) + treat + exon"


@dataclass(frozen=True)
class EngineConfig:
    """Options for the differential expression engine.

    Attributes:
        alpha: FDR threshold used to call genes significant.
        pseudocount: Added to normalized counts before log2 transforms.
        recalc_norm_factors: Recompute TMM factors after gene filtering
            (otherwise factors come from the unfiltered matrix).
        stat_framework: ``"lrt"`` (likelihood ratio, full vs reduced) or
            ``"qlf"`` (quasi-likelihood F-test on the tested coefficients).
        model_samples: Include the sample as a blocking factor in the EISA
            design, which models paired exon/intron counts per sample.
        gene_selection: ``"filter_by_expr"`` applies the edgeR expression
            filter to each matrix; ``"none"`` keeps every gene.
        full_formula: Custom-GLM full model (patsy syntax).
        reduced_formula: Custom-GLM reduced model (patsy syntax).
        min_count: CPM filter threshold expressed as a raw count.
        min_total_count: Minimum total count across samples.
    """

    alpha: float = 0.05
    pseudocount: float = 2.0
    recalc_norm_factors: bool = True
    stat_framework: StatFramework = "lrt"
    model_samples: bool = True
    gene_selection: GeneSelection = "filter_by_expr"
    full_formula: str = DEFAULT_FULL_FORMULA
    reduced_formula: str = DEFAULT_REDUCED_FORMULA
    min_count: float = 10.0
    min_total_count: float = 15.0

    def __post_init__(self):
        if not 0 < self.alpha < 1:
            raise ValueError(f"alpha must be in (0, 1), got {self.alpha}")
        if self.pseudocount < 0:
            raise ValueError(f"pseudocount must be >= 0, got {self.pseudocount}")
        if self.stat_framework not in ("lrt", "qlf"):
            raise ValueError(f"Unknown stat_framework: {self.stat_framework!r}")
        if self.gene_selection not in ("filter_by_expr", "none"):
            raise ValueError(f"Unknown gene_selection: {self.gene_selection!r}")


@dataclass(frozen=True)
class RunConfig:
    """Everything one pipeline invocation needs.

    ``conditions`` is the (reference, treatment) pair of condition labels.
    When it is ``None`` the pipeline takes the first two labels in sample
    order.
    """

    dataset: str
    input_dir: Path = Path(".")
    output_dir: Path = Path(".")
    conditions: Optional[Tuple[str, str]] = None
    engine: EngineConfig = field(default_factory=EngineConfig)
    annotate: bool = True
    interactive_plots: bool = False

    @property
    def alpha(self) -> float:
        return self.engine.alpha

    @classmethod
    def from_env(cls, dataset: str, **overrides) -> "RunConfig":
        """Build a config from ``.env`` / environment, then apply overrides.

        Recognized variables: ``EISA_INPUT_DIR``, ``EISA_OUTPUT_DIR``,
        ``EISA_ALPHA``. Overrides whose value is ``None`` are ignored.
        """
        load_dotenv()

        values = {"dataset": dataset}
        if os.environ.get("EISA_INPUT_DIR"):
            values["input_dir"] = Path(os.environ["EISA_INPUT_DIR"])
        if os.environ.get("EISA_OUTPUT_DIR"):
            values["output_dir"] = Path(os.environ["EISA_OUTPUT_DIR"])
        if os.environ.get("EISA_ALPHA"):
            values["engine"] = EngineConfig(alpha=float(os.environ["EISA_ALPHA"]))

        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
