"""Gene symbol annotation through BioMart.

The gene-ID namespace is detected from the first identifier of a result
table and dispatched to one of three fixed BioMart configurations. The
whole gene list is sent in a single query; the response is reduced to one
symbol per gene and joined onto the table.

Usage::

    from eisa_de.annotation import annotate

    annotated = annotate(result_table)   # adds a "symbol" column
"""

import logging
from dataclasses import dataclass
from enum import Enum
from io import StringIO
from typing import Dict, Optional, Sequence
from xml.sax.saxutils import escape

import pandas as pd
import requests
from requests.adapters import HTTPAdapter
from urllib3.util.retry import Retry

from .errors import AnnotationServiceUnavailable, NamespaceUndetected

logger = logging.getLogger(__name__)

ENSEMBL_MART_URL = "https://www.ensembl.org/biomart/martservice"
PARASITE_MART_URL = "https://parasite.wormbase.org/biomart/martservice"

SYMBOL_COLUMN = "symbol"


@dataclass(frozen=True)
class MartDataset:
    """BioMart lookup parameters for one gene-ID namespace."""

    url: str
    dataset: str
    id_filter: str
    symbol_attribute: str


class GeneNamespace(Enum):
    """Supported gene-ID namespaces, keyed by identifier prefix."""

    MOUSE = "ENSMUSG"
    HUMAN = "ENSG"
    WORM = "WBGene"

    @property
    def mart(self) -> MartDataset:
        return MART_DATASETS[self]


MART_DATASETS: Dict[GeneNamespace, MartDataset] = {
    GeneNamespace.HUMAN: MartDataset(
        url=ENSEMBL_MART_URL,
        dataset="hsapiens_gene_ensembl",
        id_filter="ensembl_gene_id",
        symbol_attribute="hgnc_symbol",
    ),
    GeneNamespace.MOUSE: MartDataset(
        url=ENSEMBL_MART_URL,
        dataset="mmusculus_gene_ensembl",
        id_filter="ensembl_gene_id",
        symbol_attribute="mgi_symbol",
    ),
    GeneNamespace.WORM: MartDataset(
        url=PARASITE_MART_URL,
        dataset="wbps_gene",
        id_filter="wbps_gene_id",
        symbol_attribute="external_gene_id",
    ),
}

# ENSMUSG must be tried before ENSG.
_PREFIX_ORDER = (GeneNamespace.MOUSE, GeneNamespace.HUMAN, GeneNamespace.WORM)

_QUERY_TEMPLATE = """<?xml version="1.0" encoding="UTF-8"?>
<!DOCTYPE Query>
<Query virtualSchemaName="default" formatter="TSV" header="1" uniqueRows="1" count="" datasetConfigVersion="0.6">
    <Dataset name="{dataset}" interface="default">
        <Filter name="{id_filter}" value="{values}"/>
        <Attribute name="{id_filter}"/>
        <Attribute name="{symbol_attribute}"/>
    </Dataset>
</Query>"""


def create_session(
    max_retries: int = 0,
    user_agent: str = "eisa-de/0.1",
) -> requests.Session:
    """Create a requests Session with standard headers.

    Retries are off by default: a failed lookup aborts the run.
    """
    session = requests.Session()
    adapter = HTTPAdapter(max_retries=Retry(total=max_retries, allowed_methods=("GET", "POST")))
    session.mount("http://", adapter)
    session.mount("https://", adapter)
    session.headers.update({"User-Agent": user_agent})
    return session


def detect_namespace(gene_ids: Sequence[str]) -> GeneNamespace:
    """Namespace of a gene list, decided by its first element only.

    Raises:
        NamespaceUndetected: If the list is empty or no prefix matches.
    """
    if len(gene_ids) == 0:
        raise NamespaceUndetected("Cannot detect gene namespace of an empty gene list")
    first = str(gene_ids[0])
    for namespace in _PREFIX_ORDER:
        if first.startswith(namespace.value):
            return namespace
    raise NamespaceUndetected(
        f"Gene ID {first!r} matches none of "
        f"{', '.join(ns.value for ns in _PREFIX_ORDER)}"
    )


def build_query(gene_ids: Sequence[str], mart: MartDataset) -> str:
    """BioMart XML query returning (gene ID, symbol) for ``gene_ids``."""
    return _QUERY_TEMPLATE.format(
        dataset=mart.dataset,
        id_filter=mart.id_filter,
        symbol_attribute=mart.symbol_attribute,
        values=escape(",".join(str(g) for g in gene_ids), {'"': "&quot;"}),
    )


def query_symbols(
    gene_ids: Sequence[str],
    mart: MartDataset,
    session: Optional[requests.Session] = None,
) -> pd.DataFrame:
    """Run one BioMart query; returns columns ``gene_id`` and ``symbol``.

    Raises:
        AnnotationServiceUnavailable: On connection errors, non-200 replies
            or a BioMart error message in the body.
    """
    session = session or create_session()
    logger.info("Querying BioMart %s (%s) for %d genes", mart.dataset, mart.url, len(gene_ids))
    try:
        response = session.post(mart.url, data={"query": build_query(gene_ids, mart)})
    except requests.RequestException as e:
        raise AnnotationServiceUnavailable(f"BioMart request to {mart.url} failed: {e}") from e

    if response.status_code != 200:
        raise AnnotationServiceUnavailable(
            f"BioMart returned HTTP {response.status_code} for {mart.dataset}"
        )
    text = response.text
    if "Query ERROR" in text[:200]:
        raise AnnotationServiceUnavailable(f"BioMart error: {text.strip()[:200]}")

    if not text.strip():
        return pd.DataFrame(columns=["gene_id", SYMBOL_COLUMN])

    frame = pd.read_csv(StringIO(text), sep="\t", dtype=str, keep_default_na=False)
    frame = frame.iloc[:, :2]
    frame.columns = ["gene_id", SYMBOL_COLUMN]
    return frame


def symbol_map(frame: pd.DataFrame) -> Dict[str, str]:
    """Gene ID -> symbol, keeping the first row reported for each ID."""
    named = frame[frame[SYMBOL_COLUMN].fillna("").str.len() > 0]
    named = named.drop_duplicates(subset="gene_id", keep="first")
    return dict(zip(named["gene_id"], named[SYMBOL_COLUMN]))


def symbol_lookup(
    gene_ids: Sequence[str],
    session: Optional[requests.Session] = None,
) -> Dict[str, str]:
    """Gene ID -> symbol for a whole gene list, in one BioMart query."""
    gene_ids = [str(g) for g in gene_ids]
    namespace = detect_namespace(gene_ids)
    mapping = symbol_map(query_symbols(gene_ids, namespace.mart, session=session))
    logger.info("Mapped %d of %d %s genes to symbols", len(mapping), len(gene_ids), namespace.name.lower())
    return mapping


def annotate(
    table: pd.DataFrame,
    session: Optional[requests.Session] = None,
    mapping: Optional[Dict[str, str]] = None,
) -> pd.DataFrame:
    """Return a copy of ``table`` with a ``symbol`` column.

    ``mapping`` is a precomputed ``symbol_lookup`` result; without one
    BioMart is queried for the table's genes. Genes without a match get
    an empty symbol.
    """
    gene_ids = [str(g) for g in table.index]
    if mapping is None:
        mapping = symbol_lookup(gene_ids, session=session)

    annotated = table.copy()
    annotated[SYMBOL_COLUMN] = [mapping.get(g, "") for g in gene_ids]
    return annotated
