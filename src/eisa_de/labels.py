"""Condition labels, replicate indices and the two-level condition factor."""

import re
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

# Applied in this order to every identifier, whether or not an earlier
# rule matched.
LABEL_RULES: Tuple[re.Pattern, ...] = (
    re.compile(r"_\d+$"),
    re.compile(r"_?rep\d+$", re.IGNORECASE),
    re.compile(r"^GSM\d+_"),
    re.compile(r"^\d+_"),
)

_REPLICATE = re.compile(r"(?:_|_?rep)(\d+)$", re.IGNORECASE)


def condition_label(sample_id: str) -> str:
    """Strip replicate and accession decorations from one sample ID.

    The rule list is re-applied until nothing changes, so labelling an
    already-labelled identifier is a no-op.
    """
    label = sample_id
    while True:
        stripped = label
        for rule in LABEL_RULES:
            stripped = rule.sub("", stripped)
        if stripped == label:
            return label
        label = stripped


def condition_labels(sample_ids: Sequence[str]) -> List[str]:
    """Condition label for each sample ID, in input order."""
    return [condition_label(s) for s in sample_ids]


def replicate_index(sample_id: str) -> Optional[str]:
    """Trailing replicate number of a sample ID (``A_2`` / ``A_rep2`` -> ``"2"``)."""
    match = _REPLICATE.search(sample_id)
    return match.group(1) if match else None


@dataclass(frozen=True)
class ConditionFactor:
    """Two-level condition assignment for an ordered list of samples.

    ``samples`` and ``labels`` are parallel; every label is either
    ``reference`` or ``treatment``.
    """

    reference: str
    treatment: str
    samples: Tuple[str, ...]
    labels: Tuple[str, ...]

    @property
    def is_treatment(self) -> List[int]:
        return [int(label == self.treatment) for label in self.labels]

    @property
    def group_sizes(self) -> Tuple[int, int]:
        n_treat = sum(self.is_treatment)
        return len(self.labels) - n_treat, n_treat

    @property
    def contrast_name(self) -> str:
        return f"{self.reference}.{self.treatment}"


def condition_factor(
    sample_ids: Sequence[str],
    reference: str,
    treatment: str,
) -> ConditionFactor:
    """Assign samples to the (reference, treatment) pair.

    Samples whose label is neither condition are left out of the factor;
    callers subset their matrices to ``factor.samples``.

    Raises:
        ValueError: If the labels are equal or either has no samples.
    """
    if reference == treatment:
        raise ValueError(f"Reference and treatment are both {reference!r}")

    labels = condition_labels(sample_ids)
    kept = [(s, lab) for s, lab in zip(sample_ids, labels) if lab in (reference, treatment)]
    present = {lab for _, lab in kept}
    for wanted in (reference, treatment):
        if wanted not in present:
            raise ValueError(
                f"Condition {wanted!r} has no samples (labels found: {sorted(set(labels))})"
            )

    return ConditionFactor(
        reference=reference,
        treatment=treatment,
        samples=tuple(s for s, _ in kept),
        labels=tuple(lab for _, lab in kept),
    )


def default_conditions(sample_ids: Sequence[str]) -> Tuple[str, str]:
    """First two distinct labels in sample order, as (reference, treatment)."""
    seen: List[str] = []
    for label in condition_labels(sample_ids):
        if label not in seen:
            seen.append(label)
    if len(seen) < 2:
        raise ValueError(f"Need at least two conditions, found {seen}")
    return seen[0], seen[1]
