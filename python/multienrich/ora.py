"""
Over-Representation Analysis (ORA) for MultiEnrich

Hypergeometric test of a gene subset against gene sets, restricted to a
background universe, with multiple testing correction and q-values.
"""

import logging
from typing import Dict, Iterable, List, Optional

from scipy.stats import hypergeom
from statsmodels.stats.multitest import multipletests

from .errors import ConfigurationError
from .gene_set_utils import filter_gene_sets, split_term
from .results import SubsetTerm


# R-style p.adjust names -> statsmodels methods
P_ADJUST_METHODS = {
    'BH': 'fdr_bh',
    'fdr': 'fdr_bh',
    'BY': 'fdr_by',
    'bonferroni': 'bonferroni',
    'holm': 'holm',
    'hochberg': 'simes-hochberg',
    'hommel': 'hommel',
    'none': None,
}


def statsmodels_method(p_adjust_method: str) -> Optional[str]:
    """Translate an R-style correction name, statsmodels names pass through"""
    if p_adjust_method in P_ADJUST_METHODS:
        return P_ADJUST_METHODS[p_adjust_method]
    if p_adjust_method in P_ADJUST_METHODS.values():
        return p_adjust_method
    raise ConfigurationError(
        f"Unknown p-value adjustment method '{p_adjust_method}'. "
        f"Use one of: {', '.join(P_ADJUST_METHODS)}"
    )


def hypergeometric_test(
    hit_in_pathway: int,
    pathway_size: int,
    hit_size: int,
    background_size: int
) -> float:
    """
    Perform hypergeometric test for enrichment.

    P(X >= k) where:
    - k: genes in both input and pathway
    - M: background size
    - n: pathway size
    - N: input size

    Returns:
        P-value
    """
    # P(X >= k) = 1 - P(X <= k-1)
    p_value = hypergeom.sf(hit_in_pathway - 1, background_size, pathway_size, hit_size)
    return float(min(max(p_value, 0.0), 1.0))


def adjust_p_values(p_values: List[float], method: str = 'BH') -> List[float]:
    """
    Apply multiple testing correction to p-values.

    Args:
        p_values: List of p-values
        method: R-style ('BH', 'bonferroni', ...) or statsmodels method name

    Returns:
        List of adjusted p-values
    """
    if not p_values:
        return []
    sm_method = statsmodels_method(method)
    if sm_method is None:
        return list(p_values)
    _, adjusted, _, _ = multipletests(p_values, method=sm_method)
    return [float(p) for p in adjusted]


def q_values(p_values: List[float]) -> List[float]:
    """
    FDR q-values adapted to the estimated share of true null hypotheses
    (two-stage Benjamini-Krieger-Yekutieli).

    This is not Storey's q-value: the null share comes from the first BH
    stage rather than a pi0 estimate over a lambda grid, so values differ
    from those of qvalue-based tools such as clusterProfiler.
    """
    if not p_values:
        return []
    _, qvals, _, _ = multipletests(p_values, method='fdr_tsbh')
    return [float(min(q, 1.0)) for q in qvals]


def run_ora(
    gene_list: Iterable[str],
    gene_sets: Dict[str, List[str]],
    universe: Optional[Iterable[str]] = None,
    min_size: int = 3,
    max_size: Optional[int] = None,
    pval_cutoff: float = 0.05,
    qval_cutoff: float = 0.2,
    p_adjust_method: str = 'BH',
) -> List[SubsetTerm]:
    """
    Run Over-Representation Analysis.

    Args:
        gene_list: Subset genes (e.g. up-regulated database keys)
        gene_sets: Dictionary of term -> genes
        universe: Background genes; None uses every annotated gene
        min_size: Minimum gene set size within the universe
        max_size: Maximum gene set size within the universe (None = no limit)
        pval_cutoff: Cutoff applied to raw and adjusted p-values
        qval_cutoff: Cutoff applied to q-values
        p_adjust_method: Multiple testing correction method

    Returns:
        List of SubsetTerm objects, sorted by p-value. Empty when nothing
        passes the cutoffs.
    """
    annotated = set()
    for genes in gene_sets.values():
        annotated.update(genes)
    background = annotated if universe is None else annotated & set(universe)

    restricted = filter_gene_sets(gene_sets, universe=background)
    query = set(gene_list) & background
    n = len(query)
    N = len(background)

    tested = filter_gene_sets(restricted, min_size=min_size, max_size=max_size)

    logging.info(
        f"Running ORA: {n} annotated input genes, {len(tested)}/{len(gene_sets)} gene sets, "
        f"background={N}"
    )

    rows = []
    for term, members in tested.items():
        hits = query & members
        if not hits:
            continue
        k = len(hits)
        M = len(members)
        rows.append({
            'term': term,
            'p_value': hypergeometric_test(k, M, n, N),
            'gene_ratio': f"{k}/{n}",
            'background_ratio': f"{M}/{N}",
            'hits': sorted(hits, key=_gene_order),
        })

    if not rows:
        return []

    p_values = [r['p_value'] for r in rows]
    adjusted = adjust_p_values(p_values, method=p_adjust_method)
    qvals = q_values(p_values)

    results = []
    for row, p_adj, q in zip(rows, adjusted, qvals):
        if row['p_value'] > pval_cutoff or p_adj > pval_cutoff or q > qval_cutoff:
            continue
        term_id, description = split_term(row['term'])
        results.append(SubsetTerm(
            term_id=term_id,
            description=description,
            p_value=row['p_value'],
            adjusted_p_value=p_adj,
            q_value=q,
            gene_ratio=row['gene_ratio'],
            background_ratio=row['background_ratio'],
            hits=row['hits'],
        ))

    results.sort(key=lambda x: (x.p_value, -x.count))

    logging.info(f"ORA complete: {len(results)}/{len(rows)} tested terms pass cutoffs")
    return results


def _gene_order(gene: str):
    return (0, int(gene), gene) if gene.isdigit() else (1, 0, gene)
