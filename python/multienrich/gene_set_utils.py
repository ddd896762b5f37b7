"""
Gene Set Utilities for MultiEnrich
Handles GMT and term-to-gene table loading, size filtering and statistics.
"""

import logging
import re
from typing import Dict, FrozenSet, Iterable, List, Optional, Tuple
from pathlib import Path

import pandas as pd

from .errors import InputFormatError


# Enrichr ontology terms carry their identifier in a trailing parenthesis,
# e.g. "mitochondrial translation (GO:0032543)"
TERM_ID_SUFFIX = re.compile(r'^(?P<description>.*?)\s*\((?P<term_id>(GO|DOID|HP):\d+)\)$')


def load_gmt(file_path: str) -> Dict[str, List[str]]:
    """
    Load gene sets from GMT (Gene Matrix Transposed) format file.

    GMT Format: Each line is tab-separated:
    <gene_set_name> <description> <gene1> <gene2> ... <geneN>

    Args:
        file_path: Path to GMT file

    Returns:
        Dictionary mapping gene set names to gene lists

    Raises:
        FileNotFoundError: If file doesn't exist
        InputFormatError: If file is not UTF-8
    """
    file_path = Path(file_path)

    if not file_path.exists():
        raise FileNotFoundError(f"GMT file not found: {file_path}")

    gene_sets: Dict[str, List[str]] = {}

    try:
        with open(file_path, 'r', encoding='utf-8') as f:
            for line_num, line in enumerate(f, 1):
                line = line.strip()

                # Skip empty lines and comments
                if not line or line.startswith('#'):
                    continue

                parts = line.split('\t')

                if len(parts) < 3:
                    logging.warning(
                        f"Line {line_num}: Expected at least 3 fields (name, description, genes), "
                        f"got {len(parts)}. Skipping."
                    )
                    continue

                name = parts[0]
                genes = [g.strip() for g in parts[2:] if g.strip()]

                if not genes:
                    logging.warning(f"Line {line_num}: Gene set '{name}' has no genes. Skipping.")
                    continue

                if name in gene_sets:
                    logging.warning(f"Line {line_num}: Duplicate gene set name '{name}'. Merging genes.")
                    gene_sets[name] = list(dict.fromkeys(gene_sets[name] + genes))
                else:
                    gene_sets[name] = list(dict.fromkeys(genes))
    except UnicodeDecodeError as e:
        raise InputFormatError(f"Invalid file encoding. Expected UTF-8: {e}")

    logging.info(f"Loaded {len(gene_sets)} gene sets from {file_path}")
    return gene_sets


def save_gmt(gene_sets: Dict[str, List[str]], file_path: str, description: str = "") -> None:
    """
    Save gene sets to GMT format file.

    Args:
        gene_sets: Dictionary mapping gene set names to gene lists
        file_path: Output file path
        description: Optional description for all gene sets (default: empty)
    """
    file_path = Path(file_path)
    file_path.parent.mkdir(parents=True, exist_ok=True)

    with open(file_path, 'w', encoding='utf-8') as f:
        for name, genes in gene_sets.items():
            line = f"{name}\t{description}\t" + "\t".join(genes)
            f.write(line + "\n")

    logging.info(f"Saved {len(gene_sets)} gene sets to {file_path}")


def load_term2gene(file_path: str, sep: Optional[str] = None) -> Dict[str, List[str]]:
    """
    Load a custom signature table with 'term' and 'gene' columns.

    Files ending in .gmt are read as GMT instead. The separator of other
    files is sniffed unless given.
    """
    file_path = Path(file_path)
    if file_path.suffix.lower() == '.gmt':
        return load_gmt(str(file_path))
    if not file_path.exists():
        raise FileNotFoundError(f"Signature table not found: {file_path}")

    df = pd.read_csv(file_path, sep=sep, engine='python', dtype=str)
    df.columns = [str(c).strip().lower() for c in df.columns]
    missing = [c for c in ('term', 'gene') if c not in df.columns]
    if missing:
        raise InputFormatError(f"{file_path.name}: signature table missing columns {missing}")

    df = df.dropna(subset=['term', 'gene'])
    gene_sets: Dict[str, List[str]] = {}
    for term, gene in zip(df['term'], df['gene']):
        gene_sets.setdefault(term.strip(), []).append(gene.strip())
    gene_sets = {term: list(dict.fromkeys(genes)) for term, genes in gene_sets.items()}

    logging.info(f"Loaded {len(gene_sets)} signatures from {file_path.name}")
    return gene_sets


def filter_gene_sets(
    gene_sets: Dict[str, List[str]],
    min_size: int = 1,
    max_size: Optional[int] = None,
    universe: Optional[Iterable[str]] = None,
) -> Dict[str, FrozenSet[str]]:
    """
    Restrict gene sets to a universe and keep those within the size bounds.

    Sizes are counted after intersecting with the universe.

    Args:
        gene_sets: Gene set name -> genes
        min_size: Minimum number of genes
        max_size: Maximum number of genes (None for no limit)
        universe: Background genes (None keeps sets unrestricted)

    Returns:
        Gene set name -> frozenset of genes
    """
    universe_set = frozenset(universe) if universe is not None else None
    kept: Dict[str, FrozenSet[str]] = {}
    for name, genes in gene_sets.items():
        members = frozenset(genes)
        if universe_set is not None:
            members = members & universe_set
        if len(members) < min_size:
            continue
        if max_size is not None and len(members) > max_size:
            continue
        kept[name] = members

    logging.debug(f"Size filter [{min_size}, {max_size}]: {len(kept)}/{len(gene_sets)} gene sets kept")
    return kept


def split_term(term: str) -> Tuple[str, str]:
    """
    Split an Enrichr term name into (term_id, description).

    Terms without an embedded identifier use the full name for both.
    """
    match = TERM_ID_SUFFIX.match(term)
    if match:
        return match.group('term_id'), match.group('description')
    return term, term


def get_gene_set_stats(gene_sets: Dict[str, Iterable[str]]) -> Dict[str, float]:
    """
    Get statistics about gene sets.

    Returns:
        Dictionary with stats: total_sets, total_genes, unique_genes, avg_size, min_size, max_size
    """
    if not gene_sets:
        return {
            "total_sets": 0,
            "total_genes": 0,
            "unique_genes": 0,
            "avg_size": 0,
            "min_size": 0,
            "max_size": 0
        }

    sizes = [len(list(genes)) for genes in gene_sets.values()]
    all_genes = set()
    for genes in gene_sets.values():
        all_genes.update(genes)

    return {
        "total_sets": len(gene_sets),
        "total_genes": sum(sizes),
        "unique_genes": len(all_genes),
        "avg_size": sum(sizes) / len(sizes),
        "min_size": min(sizes),
        "max_size": max(sizes)
    }
