"""
Shared fakes for the MultiEnrich tests. Nothing here touches the network.
"""

from pathlib import Path
from typing import Dict, List, Optional

import pandas as pd
import pytest

from multienrich.id_mapper import MappingTable
from multienrich.router import RenderStrategy


# symbol, Ensembl accession, Entrez key
GENES = [
    ('TP53', 'ENSG00000141510', '7157'),
    ('BRCA1', 'ENSG00000012048', '672'),
    ('EGFR', 'ENSG00000146648', '1956'),
    ('MYC', 'ENSG00000136997', '4609'),
    ('MAR2', 'ENSG00000099785', '51257'),
    ('SEPT2', 'ENSG00000168385', '4735'),
    ('IL6', 'ENSG00000136244', '3569'),
    ('TNF', 'ENSG00000232810', '7124'),
    ('CDK4', 'ENSG00000135446', '1019'),
    ('RB1', 'ENSG00000139687', '5925'),
]


class FakeKeyLookup:
    """In-memory stand-in for MyGeneKeyLookup"""

    def __init__(self, genes=GENES, missing_keys=()):
        self.accession_keys = {acc: key for _, acc, key in genes if acc not in missing_keys}
        self.symbol_keys = {sym: key for sym, acc, key in genes if acc not in missing_keys}
        self.calls: List[str] = []

    def accession_to_key(self, accessions) -> MappingTable:
        self.calls.append('accession_to_key')
        return MappingTable(
            ((a, self.accession_keys[a]) for a in accessions if a in self.accession_keys),
            source='ensembl.gene', target='entrezgene',
        )

    def key_to_accession(self, keys) -> MappingTable:
        self.calls.append('key_to_accession')
        inverse = {key: acc for acc, key in self.accession_keys.items()}
        return MappingTable(
            ((k, inverse[k]) for k in keys if k in inverse),
            source='entrezgene', target='ensembl.gene',
        )

    def symbol_to_key(self, symbols) -> MappingTable:
        self.calls.append('symbol_to_key')
        return MappingTable(
            ((s, self.symbol_keys[s]) for s in symbols if s in self.symbol_keys),
            source='symbol', target='entrezgene',
        )


class RecordingRenderer(RenderStrategy):
    """Records plot requests and touches the target files"""

    def __init__(self, fail_on: Optional[set] = None):
        self.calls: List[tuple] = []
        self.unmapped: List[Path] = []
        self.fail_on = fail_on or set()

    def render(self, plot, context, path: Path) -> None:
        if plot.kind in self.fail_on:
            raise RuntimeError(f"cannot draw {plot.kind}")
        self.calls.append((context.profile.name, plot.kind, plot.filename, plot.term_range))
        Path(path).touch()

    def render_unmapped_distribution(self, report, path: Path) -> None:
        self.unmapped.append(path)
        Path(path).touch()

    def kinds(self) -> List[str]:
        return [kind for _, kind, _, _ in self.calls]


@pytest.fixture
def key_lookup():
    return FakeKeyLookup()


@pytest.fixture
def features() -> pd.DataFrame:
    return pd.DataFrame(
        [(acc, sym, 'Gene Expression') for sym, acc, _ in GENES],
        columns=['accession', 'symbol', 'feature_type'],
    )


@pytest.fixture
def translation(features) -> MappingTable:
    return MappingTable.from_frame(features, 'symbol', 'accession')


@pytest.fixture
def renderer():
    return RecordingRenderer()


def symbol_key(symbol: str) -> str:
    return {sym: key for sym, _, key in GENES}[symbol]
