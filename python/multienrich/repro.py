"""
Reproducibility Logger for MultiEnrich

Tracks and logs all metadata required for scientific reproducibility:
- Software versions
- Gene set library versions and hashes
- Analysis parameters
- Input/output summaries
"""

import hashlib
import json
import logging
import sys
import uuid
from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional

import gseapy
import matplotlib
import mygene
import pandas
import scipy
import statsmodels
import yaml

from . import __version__


@dataclass
class PipelineMetadata:
    """Complete metadata for a single enrichment run"""

    # Unique identifiers
    run_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    # Software versions
    software_version: str = __version__
    python_version: str = ""
    dependencies: Dict[str, str] = field(default_factory=dict)

    # Gene set libraries: database -> version/hash
    gene_sets: Dict[str, Dict[str, Any]] = field(default_factory=dict)

    # Analysis parameters
    parameters: Dict[str, Any] = field(default_factory=dict)

    # Input summary
    input_summary: Dict[str, Any] = field(default_factory=dict)

    # Mapping information
    mapping_report: Dict[str, Any] = field(default_factory=dict)

    # Universe overlap per database
    universe_overlap: Dict[str, Any] = field(default_factory=dict)

    # Output summary
    output_summary: Dict[str, Any] = field(default_factory=dict)

    # Warnings/Notes
    warnings: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict:
        """Convert to dictionary for JSON serialization"""
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), indent=2, default=str)

    def save(self, output_path: Path):
        """Save metadata to JSON file"""
        with open(output_path, 'w') as f:
            f.write(self.to_json())
        logging.info(f"Saved pipeline metadata to {output_path}")


class ReproducibilityLogger:
    """
    Logger for tracking reproducibility metadata during an enrichment run.
    """

    def __init__(self):
        self.metadata = PipelineMetadata()
        self._initialize_versions()

    def _initialize_versions(self):
        """Record software versions"""
        self.metadata.python_version = (
            f"{sys.version_info.major}.{sys.version_info.minor}.{sys.version_info.micro}"
        )
        self.metadata.dependencies = {
            module.__name__: getattr(module, '__version__', 'unknown')
            for module in (scipy, pandas, statsmodels, gseapy, mygene, matplotlib)
        }

    def set_gene_set_info(self, database: str, version: str, gene_sets: Dict[str, list]):
        """
        Record gene set library information.

        Args:
            database: Database label (e.g. 'GO-BP', 'MSDB-H')
            version: Library name or 'custom'
            gene_sets: The actual gene sets for hash calculation
        """
        self.metadata.gene_sets[database] = {
            'version': version,
            'n_sets': len(gene_sets),
            'hash': self._calculate_gene_set_hash(gene_sets),
        }

    def _calculate_gene_set_hash(self, gene_sets: Dict[str, list]) -> str:
        """
        SHA256 of the gene sets, based on sorted names and sorted members.
        """
        sorted_items = []
        for name in sorted(gene_sets.keys()):
            genes = sorted(str(g) for g in gene_sets[name])
            sorted_items.append(f"{name}::{','.join(genes)}")

        content = "||".join(sorted_items)
        return hashlib.sha256(content.encode()).hexdigest()[:16]  # Short hash

    def set_parameters(self, **params):
        self.metadata.parameters.update(params)

    def set_input_summary(self, **summary):
        """
        Common fields: total_genes, ranked_genes, subset sizes, species
        """
        self.metadata.input_summary.update(summary)

    def set_mapping_report(self, mapping_report: Dict):
        self.metadata.mapping_report = mapping_report

    def add_universe_overlap(self, database: str, overlap: Dict):
        self.metadata.universe_overlap[database] = overlap

    def set_output_summary(self, **summary):
        self.metadata.output_summary.update(summary)

    def add_warning(self, warning: str):
        """Add a warning message"""
        self.metadata.warnings.append(warning)
        logging.warning(f"Pipeline warning: {warning}")

    def get_metadata(self) -> PipelineMetadata:
        return self.metadata

    def export_yaml(self, output_path: Path):
        """Export pipeline metadata as YAML (for maximum readability)"""
        with open(output_path, 'w') as f:
            yaml.safe_dump(json.loads(self.metadata.to_json()), f, default_flow_style=False)
        logging.info(f"Saved pipeline metadata (YAML) to {output_path}")

    def export_json(self, output_path: Path):
        self.metadata.save(output_path)
