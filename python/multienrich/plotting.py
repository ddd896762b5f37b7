"""
Default rendering strategy: matplotlib figures, gseapy running-score plots,
networkx layouts for the gene/term networks and scipy dendrograms for the
term tree.
"""

import logging
from pathlib import Path
from typing import Dict, List

import matplotlib
matplotlib.use("Agg")
import matplotlib.pyplot as plt
import networkx as nx
import numpy as np
import gseapy as gp
from scipy.cluster import hierarchy

from .id_mapper import MappingReport
from .router import PlotSpec, RenderContext, RenderStrategy
from .similarity import cluster_terms, similar_pairs, term_linkage

logger = logging.getLogger("MultiEnrich.Plotting")

FIGSIZE = (11.8, 7.9)  # 30 x 20 cm
DPI = 150
LABEL_WIDTH = 60
UPSET_TERMS = 10
EMAP_MIN_SIMILARITY = 0.2


def _short(text: str, width: int = LABEL_WIDTH) -> str:
    return text if len(text) <= width else text[:width - 3] + '...'


def _save(fig, path: Path):
    fig.savefig(path, dpi=DPI, bbox_inches='tight')
    plt.close(fig)


class MatplotlibRenderer(RenderStrategy):
    """Draws every plot kind the router plans"""

    def render(self, plot: PlotSpec, context: RenderContext, path: Path) -> None:
        draw = getattr(self, f"_{plot.kind}", None)
        if draw is None:
            raise ValueError(f"Unknown plot kind: {plot.kind}")
        if plot.term_range is not None:
            draw(context, path, plot.term_range)
        else:
            draw(context, path)

    def render_unmapped_distribution(self, report: MappingReport, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        fig, ax = plt.subplots(figsize=FIGSIZE)
        ax.hist(report.unmapped_ranks, bins=50, color='grey', edgecolor='black')
        ax.set_xlabel("Rank in input table")
        ax.set_ylabel("Unmapped genes")
        ax.set_title(f"Distribution of unmapped genes ({report.mapped_fraction:.1%} mapped)")
        _save(fig, path)

    # --- term values -----------------------------------------------------

    @staticmethod
    def _top(context: RenderContext, n: int = None):
        return context.result.terms[:n or context.top_n]

    @staticmethod
    def _ratio(context: RenderContext, term) -> float:
        if context.profile.is_rank_based:
            return len(term.leading_edge) / term.set_size if term.set_size else 0.0
        return term.gene_ratio_value

    # --- common plots ----------------------------------------------------

    def _dotplot(self, context: RenderContext, path: Path):
        terms = self._top(context)[::-1]
        fig, ax = plt.subplots(figsize=FIGSIZE)
        self._dot_axis(ax, context, terms)
        ax.set_title(context.profile.name)
        _save(fig, path)

    def _dot_axis(self, ax, context: RenderContext, terms):
        x = [self._ratio(context, t) for t in terms]
        sizes = [max(len(t.genes), 1) * 20 for t in terms]
        colors = [t.adjusted_p_value for t in terms]
        points = ax.scatter(x, range(len(terms)), s=sizes, c=colors, cmap='RdBu', edgecolors='black')
        ax.set_yticks(range(len(terms)))
        ax.set_yticklabels([_short(t.description) for t in terms])
        ax.set_xlabel("GeneRatio")
        ax.figure.colorbar(points, ax=ax, label='p.adjust')

    def _cnetplot(self, context: RenderContext, path: Path):
        graph = nx.Graph()
        for term_id, genes in context.result.term_genes(context.top_n).items():
            graph.add_node(term_id, kind='term')
            for gene in genes:
                label = context.label(gene)
                graph.add_node(label, kind='gene', fc=context.fold_changes.get(gene, 0.0))
                graph.add_edge(term_id, label)

        pos = nx.spring_layout(graph, seed=42)
        terms = [n for n, d in graph.nodes(data=True) if d['kind'] == 'term']
        genes = [n for n, d in graph.nodes(data=True) if d['kind'] == 'gene']

        fig, ax = plt.subplots(figsize=FIGSIZE)
        nx.draw_networkx_edges(graph, pos, ax=ax, alpha=0.3)
        nx.draw_networkx_nodes(graph, pos, nodelist=terms, node_color='tan', node_size=300, ax=ax)
        nx.draw_networkx_nodes(
            graph, pos, nodelist=genes, node_size=60, cmap='coolwarm', ax=ax,
            node_color=[graph.nodes[g]['fc'] for g in genes],
        )
        nx.draw_networkx_labels(graph, pos, font_size=6, ax=ax)
        ax.axis('off')
        _save(fig, path)

    def _upsetplot(self, context: RenderContext, path: Path):
        term_genes = context.result.term_genes(UPSET_TERMS)
        terms = list(term_genes)
        membership: Dict[tuple, int] = {}
        for gene in {g for genes in term_genes.values() for g in genes}:
            combo = tuple(t for t in terms if gene in term_genes[t])
            membership[combo] = membership.get(combo, 0) + 1
        combos = sorted(membership.items(), key=lambda kv: -kv[1])

        fig, (bars, grid) = plt.subplots(
            2, 1, figsize=FIGSIZE, sharex=True, gridspec_kw={'height_ratios': [2, 1]}
        )
        bars.bar(range(len(combos)), [count for _, count in combos], color='dimgrey')
        bars.set_ylabel("Genes")
        for x, (combo, _) in enumerate(combos):
            ys = [terms.index(t) for t in combo]
            grid.scatter([x] * len(terms), range(len(terms)), color='lightgrey', s=20)
            grid.scatter([x] * len(ys), ys, color='black', s=20)
            if len(ys) > 1:
                grid.plot([x, x], [min(ys), max(ys)], color='black')
        grid.set_yticks(range(len(terms)))
        grid.set_yticklabels([_short(t, 40) for t in terms])
        grid.set_xticks([])
        _save(fig, path)

    def _emapplot(self, context: RenderContext, path: Path):
        terms = {t.term_id: t for t in self._top(context)}
        graph = nx.Graph()
        graph.add_nodes_from(terms)
        for a, b, weight in similar_pairs(context.similarity, EMAP_MIN_SIMILARITY):
            graph.add_edge(a, b, weight=weight)

        pos = nx.spring_layout(graph, seed=42)
        fig, ax = plt.subplots(figsize=FIGSIZE)
        widths = [graph.edges[e]['weight'] * 4 for e in graph.edges]
        nx.draw_networkx_edges(graph, pos, width=widths, alpha=0.4, ax=ax)
        nodes = list(graph.nodes)
        nx.draw_networkx_nodes(
            graph, pos, ax=ax, cmap='RdBu',
            node_size=[max(len(terms[n].genes), 1) * 30 for n in nodes],
            node_color=[terms[n].adjusted_p_value for n in nodes],
        )
        nx.draw_networkx_labels(
            graph, pos, labels={n: _short(terms[n].description, 30) for n in nodes}, font_size=6, ax=ax,
        )
        ax.axis('off')
        _save(fig, path)

    def _treeplot(self, context: RenderContext, path: Path):
        similarity = context.similarity
        linkage = term_linkage(similarity)
        clusters = cluster_terms(similarity, n_clusters=5)
        descriptions = {t.term_id: t.description for t in context.result.terms}

        fig, ax = plt.subplots(figsize=FIGSIZE)
        hierarchy.dendrogram(
            linkage,
            labels=[f"[{clusters[t]}] {_short(descriptions.get(t, t), 40)}" for t in similarity.index],
            orientation='left',
            ax=ax,
        )
        ax.set_xlabel("1 - Jaccard similarity")
        _save(fig, path)

    # --- rank-based plots ------------------------------------------------

    def _ridgeplot(self, context: RenderContext, path: Path):
        terms = self._top(context)
        data, labels = [], []
        for term in terms:
            values = [context.fold_changes[g] for g in term.leading_edge if g in context.fold_changes]
            if values:
                data.append(values)
                labels.append(_short(term.description))
        if not data:
            raise ValueError("no leading-edge gene has a fold change")

        fig, ax = plt.subplots(figsize=FIGSIZE)
        ax.violinplot(data, vert=False, showmedians=True)
        ax.set_yticks(range(1, len(labels) + 1))
        ax.set_yticklabels(labels)
        ax.set_xlabel("Effect size of leading-edge genes")
        _save(fig, path)

    def _dotplot_split(self, context: RenderContext, path: Path):
        half = max(context.top_n // 2, 1)
        activated = [t for t in context.result.terms if t.normalized_score > 0][:half]
        suppressed = [t for t in context.result.terms if t.normalized_score < 0][:half]

        fig, axes = plt.subplots(1, 2, figsize=FIGSIZE)
        for ax, terms, title in ((axes[0], activated, 'activated'), (axes[1], suppressed, 'suppressed')):
            ax.set_title(title)
            if terms:
                self._dot_axis(ax, context, terms[::-1])
            else:
                ax.axis('off')
        fig.tight_layout()
        _save(fig, path)

    def _gseaplot(self, context: RenderContext, path: Path, term_range):
        start, end = term_range
        terms = context.result.terms[start:end]
        ranking = context.result.ranking
        gp.gseaplot2(
            terms=[t.description for t in terms],
            hits=[t.hit_indices for t in terms],
            RESs=[np.asarray(t.running_scores) for t in terms],
            rank_metric=ranking.as_series() if ranking is not None else None,
            figsize=(6, 4),
            ofname=str(path),
        )
        plt.close('all')

    # --- subset-based plots ----------------------------------------------

    def _heatplot(self, context: RenderContext, path: Path):
        term_genes = context.result.term_genes(context.top_n)
        genes: List[str] = list(dict.fromkeys(g for gs in term_genes.values() for g in gs))
        matrix = np.full((len(term_genes), len(genes)), np.nan)
        for i, members in enumerate(term_genes.values()):
            for gene in members:
                matrix[i, genes.index(gene)] = context.fold_changes.get(gene, 0.0)

        fig, ax = plt.subplots(figsize=FIGSIZE)
        image = ax.imshow(np.ma.masked_invalid(matrix), aspect='auto', cmap='coolwarm')
        descriptions = {t.term_id: t.description for t in context.result.terms}
        ax.set_yticks(range(len(term_genes)))
        ax.set_yticklabels([_short(descriptions[t], 40) for t in term_genes])
        ax.set_xticks(range(len(genes)))
        ax.set_xticklabels([context.label(g) for g in genes], rotation=90, fontsize=5)
        fig.colorbar(image, ax=ax, label='fold change')
        _save(fig, path)

    def _goplot(self, context: RenderContext, path: Path):
        """Terms linked when one term's genes contain another's"""
        term_genes = {t: set(g) for t, g in context.result.term_genes(context.top_n).items()}
        graph = nx.DiGraph()
        graph.add_nodes_from(term_genes)
        for a, genes_a in term_genes.items():
            for b, genes_b in term_genes.items():
                if a != b and genes_b < genes_a:
                    graph.add_edge(a, b)
        graph = nx.transitive_reduction(graph) if nx.is_directed_acyclic_graph(graph) else graph

        fig, ax = plt.subplots(figsize=FIGSIZE)
        pos = nx.spring_layout(graph, seed=42)
        p_values = {t.term_id: t.adjusted_p_value for t in context.result.terms}
        nx.draw_networkx(
            graph, pos, ax=ax, font_size=6, arrows=True, cmap='RdBu',
            node_color=[p_values[n] for n in graph.nodes],
        )
        ax.set_title(f"GO {context.profile.ontology_branch}")
        ax.axis('off')
        _save(fig, path)
