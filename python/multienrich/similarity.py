"""
Read-only derived views of one enrichment result: pairwise term similarity
and term clusters. Computed just before rendering, never stored on the result.
"""

import logging
from typing import Dict, List, Optional, Set

import numpy as np
import pandas as pd
from scipy.cluster import hierarchy
from scipy.spatial.distance import squareform

from .results import EnrichmentResult

logger = logging.getLogger("MultiEnrich.Similarity")


def calculate_jaccard(set_a: Set[str], set_b: Set[str]) -> float:
    """Calculates Jaccard Index: Intersection / Union"""
    if not set_a or not set_b:
        return 0.0
    union = len(set_a | set_b)
    return len(set_a & set_b) / union if union > 0 else 0.0


def pairwise_term_similarity(result: EnrichmentResult, top_n: Optional[int] = None) -> pd.DataFrame:
    """
    Jaccard similarity between the gene sets driving each pair of terms.

    Returns:
        Square DataFrame indexed by term id, in result order
    """
    term_genes = {term: set(genes) for term, genes in result.term_genes(top_n).items()}
    terms = list(term_genes)
    matrix = np.eye(len(terms))
    for i, a in enumerate(terms):
        for j in range(i + 1, len(terms)):
            matrix[i, j] = matrix[j, i] = calculate_jaccard(term_genes[a], term_genes[terms[j]])
    return pd.DataFrame(matrix, index=terms, columns=terms)


def term_linkage(similarity: pd.DataFrame, method: str = 'average') -> Optional[np.ndarray]:
    """Hierarchical clustering of terms on 1 - similarity; None below two terms"""
    if len(similarity) < 2:
        return None
    distance = 1.0 - similarity.to_numpy(dtype=float)
    np.fill_diagonal(distance, 0.0)
    return hierarchy.linkage(squareform(distance, checks=False), method=method)


def cluster_terms(
    similarity: pd.DataFrame,
    n_clusters: int = 3,
    method: str = 'average',
) -> Dict[str, int]:
    """
    Group terms into at most n_clusters clusters.

    Returns:
        Term id -> cluster number (1-based)
    """
    terms = list(similarity.index)
    if len(terms) < 2:
        return {term: 1 for term in terms}
    linkage = term_linkage(similarity, method=method)
    labels = hierarchy.fcluster(linkage, t=min(n_clusters, len(terms)), criterion='maxclust')
    clusters = {term: int(label) for term, label in zip(terms, labels)}
    logger.debug(f"Clustered {len(terms)} terms into {len(set(labels))} groups")
    return clusters


def similar_pairs(similarity: pd.DataFrame, threshold: float = 0.2) -> List[tuple]:
    """(term_a, term_b, similarity) for every pair at or above threshold"""
    terms = list(similarity.index)
    values = similarity.to_numpy(dtype=float)
    pairs = []
    for i, a in enumerate(terms):
        for j in range(i + 1, len(terms)):
            if values[i, j] >= threshold:
                pairs.append((a, terms[j], float(values[i, j])))
    return pairs
