"""
GSEA (Gene Set Enrichment Analysis) for MultiEnrich

Wrapper around gseapy prerank. Returns one RankedTerm per significant gene
set, including the running-score trace needed for running-score plots.
"""

import logging
import warnings
from typing import Any, Dict, List, Optional

import numpy as np
import pandas as pd
import gseapy as gp

from .gene_set_utils import filter_gene_sets, split_term
from .ora import adjust_p_values
from .ranking import RankedGeneList
from .results import RankedTerm


def prepare_ranking(ranked: RankedGeneList) -> pd.Series:
    """
    Ranked list as a gseapy-ready Series.

    gseapy's Rust core can reorder genes with identical scores between runs;
    tied scores get a tiny decreasing offset so the input order is kept.
    """
    rnk = ranked.as_series()
    if rnk.duplicated().any():
        duplicate_pct = rnk.duplicated().sum() / len(rnk) * 100
        logging.info(f"GSEA tie offset: applied to {duplicate_pct:.1f}% duplicated values")
        rnk = rnk - np.arange(len(rnk)) * 1e-9
    return rnk


def run_gsea_prerank(
    ranked: RankedGeneList,
    gene_sets: Dict[str, List[str]],
    min_size: int = 10,
    max_size: int = 500,
    pval_cutoff: float = 0.05,
    p_adjust_method: str = 'BH',
    permutation_num: int = 1000,
    seed: int = 42,
    threads: int = 1,
) -> List[RankedTerm]:
    """
    Run GSEA prerank analysis with a ranked gene list.

    Args:
        ranked: Ranked database keys (decreasing score)
        gene_sets: Dictionary of term -> gene keys
        min_size: Minimum gene set size after matching to the ranking
        max_size: Maximum gene set size after matching to the ranking
        pval_cutoff: Cutoff applied to nominal and adjusted p-values
        p_adjust_method: Multiple testing correction of nominal p-values
        permutation_num: Number of permutations for p-value calculation
        seed: Random seed for reproducibility
        threads: gseapy worker threads

    Returns:
        RankedTerm list ordered by adjusted p-value, then |NES|
    """
    if len(ranked) == 0:
        logging.warning("GSEA skipped: empty ranked list")
        return []

    testable = filter_gene_sets(gene_sets, min_size=min_size, max_size=max_size, universe=ranked.keys)
    if not testable:
        logging.info(f"GSEA skipped: no gene set has {min_size}-{max_size} ranked genes")
        return []

    rnk = prepare_ranking(ranked)

    logging.info(
        f"Running GSEA prerank: {len(rnk)} genes, "
        f"{len(testable)}/{len(gene_sets)} gene sets, {permutation_num} permutations"
    )

    with warnings.catch_warnings():
        warnings.simplefilter("ignore")
        pre_res = gp.prerank(
            rnk=rnk,
            gene_sets={term: sorted(genes) for term, genes in testable.items()},
            min_size=min_size,
            max_size=max_size,
            permutation_num=permutation_num,
            threads=threads,
            outdir=None,
            no_plot=True,
            seed=seed,
            verbose=False,
        )

    res2d = pre_res.res2d
    if res2d is None or len(res2d) == 0:
        return []

    details = getattr(pre_res, 'results', {}) or {}
    rows = [_parse_row(row, details) for _, row in res2d.iterrows()]

    adjusted = adjust_p_values([r['p_value'] for r in rows], method=p_adjust_method)

    terms = []
    for row, p_adj in zip(rows, adjusted):
        if row['p_value'] > pval_cutoff or p_adj > pval_cutoff:
            continue
        term_id, description = split_term(row['term'])
        terms.append(RankedTerm(
            term_id=term_id,
            description=description,
            set_size=row['set_size'],
            enrichment_score=row['es'],
            normalized_score=row['nes'],
            p_value=row['p_value'],
            adjusted_p_value=p_adj,
            fdr=row['fdr'],
            leading_edge=row['lead_genes'],
            running_scores=row['running_scores'],
            hit_indices=row['hits'],
        ))

    terms.sort(key=lambda t: (t.adjusted_p_value, -abs(t.normalized_score)))

    logging.info(
        f"GSEA complete: {len(terms)}/{len(rows)} gene sets pass cutoffs "
        f"({sum(1 for t in terms if t.normalized_score > 0)} positive NES)"
    )
    return terms


def _parse_row(row: pd.Series, details: Dict[str, Dict[str, Any]]) -> Dict[str, Any]:
    term = str(row.get('Term', ''))
    detail = details.get(term, {})

    lead_genes_str = row.get('Lead_genes', '')
    lead_genes = [g for g in str(lead_genes_str).split(';') if g] if _present(lead_genes_str) else []

    matched = detail.get('matched_genes')
    if _present(matched):
        set_size = len([g for g in str(matched).split(';') if g])
    else:
        set_size = _size_from_tag(row.get('Tag %'))

    return {
        'term': term,
        'es': _as_float(row.get('ES'), 0.0),
        'nes': _as_float(row.get('NES'), 0.0),
        'p_value': _as_float(row.get('NOM p-val'), 1.0),
        'fdr': _as_float(row.get('FDR q-val'), 1.0),
        'lead_genes': lead_genes,
        'set_size': set_size,
        'running_scores': [float(x) for x in detail.get('RES', [])],
        'hits': [int(x) for x in detail.get('hits', [])],
    }


def _present(value) -> bool:
    return value is not None and not (isinstance(value, float) and np.isnan(value)) and str(value) != ''


def _as_float(value, default: float) -> float:
    try:
        value = float(value)
    except (TypeError, ValueError):
        return default
    return default if np.isnan(value) else value


def _size_from_tag(tag: Optional[str]) -> int:
    """'Tag %' is reported as "hits/size" by recent gseapy releases"""
    if not _present(tag):
        return 0
    _, sep, size = str(tag).partition('/')
    try:
        return int(size) if sep else 0
    except ValueError:
        return 0
