"""Error kinds raised by the pipeline.

Every error is fatal for the run that raises it; nothing in the package
catches these except the CLI, which reports them and exits non-zero.
"""


class EisaError(Exception):
    """Base class for pipeline failures."""


class InputNotFound(EisaError):
    """A count table expected on disk does not exist."""


class ColumnMismatch(EisaError):
    """Exon and intron matrices do not share identical sample columns."""


class NamespaceUndetected(EisaError):
    """No supported gene-ID prefix matched the first gene identifier."""


class AnnotationServiceUnavailable(EisaError):
    """The BioMart annotation service could not be queried."""


class StatisticalFitFailure(EisaError):
    """A model could not be fitted (e.g. a rank-deficient design)."""
