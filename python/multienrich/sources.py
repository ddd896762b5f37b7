"""
Gene Set Source Manager for MultiEnrich

Manages download and caching of gene set libraries:
- Enrichr libraries fetched through gseapy (GO, KEGG, WikiPathways,
  Reactome, disease ontologies)
- Custom signature files (GMT or term/gene tables)

Downloaded libraries are cached as GMT files with a metadata.json that
records the library version, download date and file hash. Gene sets are
translated into the database key namespace before analysis.
"""

import hashlib
import json
import logging
from datetime import datetime, timedelta
from pathlib import Path
from typing import Dict, List, Optional, Tuple

import gseapy as gp

from .gene_set_utils import get_gene_set_stats, load_gmt, load_term2gene, save_gmt
from .id_mapper import MappingTable


CUSTOM_GENE_TYPES = ('entrez', 'symbol', 'ensembl')


class GeneSetSourceManager:
    """
    Manages gene set library downloads and caching.

    Uses simple file-based cache with version tracking.
    """

    def __init__(self, cache_dir: Optional[Path] = None, cache_days: int = 30):
        """
        Initialize source manager.

        Args:
            cache_dir: Directory for caching gene sets
            cache_days: Age after which a cached library is downloaded again
        """
        self.cache_dir = Path(cache_dir) if cache_dir else Path.home() / '.multienrich' / 'cache' / 'genesets'
        self.cache_dir.mkdir(parents=True, exist_ok=True)
        self.cache_days = cache_days

        self.metadata_file = self.cache_dir / 'metadata.json'
        self.metadata = self._load_metadata()

    def _load_metadata(self) -> Dict:
        """Load cache metadata"""
        if not self.metadata_file.exists():
            return {}
        try:
            with open(self.metadata_file, 'r') as f:
                return json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            logging.warning(f"Ignoring unreadable gene set metadata: {e}")
            return {}

    def _save_metadata(self):
        """Save cache metadata"""
        with open(self.metadata_file, 'w') as f:
            json.dump(self.metadata, f, indent=2)

    def _calculate_hash(self, file_path: Path) -> str:
        """Calculate SHA256 hash of a file"""
        sha256 = hashlib.sha256()
        with open(file_path, 'rb') as f:
            for chunk in iter(lambda: f.read(8192), b''):
                sha256.update(chunk)
        return sha256.hexdigest()[:16]  # Short hash

    @staticmethod
    def _source_key(library_name: str, organism: str) -> str:
        return f"{library_name}_{organism}".lower()

    def _is_cache_valid(self, source_key: str) -> bool:
        """Check if cached gene set is still valid"""
        if source_key not in self.metadata:
            return False

        meta = self.metadata[source_key]
        cache_file = Path(meta.get('cache_file', ''))
        if not cache_file.exists():
            return False

        cached_date = datetime.fromisoformat(meta.get('download_date', '2000-01-01'))
        if datetime.now() - cached_date > timedelta(days=self.cache_days):
            logging.info(f"Cache expired for {source_key}")
            return False

        return True

    def load_library(self, library_name: str, organism: str = 'Human') -> Tuple[Dict[str, List[str]], Dict]:
        """
        Load an Enrichr library (gene symbols), from cache when possible.

        Args:
            library_name: Enrichr library name, e.g. 'KEGG_2021_Human'
            organism: Enrichr organism ('Human', 'Mouse')

        Returns:
            Tuple of (gene_sets_dict, metadata_dict)
        """
        source_key = self._source_key(library_name, organism)
        if self._is_cache_valid(source_key):
            logging.info(f"Loading {library_name} from cache")
            return self._load_from_cache(source_key)

        logging.info(f"Downloading {library_name} via gseapy")
        return self._download_and_cache(source_key, library_name, organism)

    def _load_from_cache(self, source_key: str) -> Tuple[Dict[str, List[str]], Dict]:
        """Load gene sets from cache"""
        meta = self.metadata[source_key]
        gene_sets = load_gmt(meta['cache_file'])
        return gene_sets, {
            'source': source_key,
            'version': meta.get('version', 'unknown'),
            'download_date': meta.get('download_date'),
            'file_hash': meta.get('hash'),
            'stats': get_gene_set_stats(gene_sets),
        }

    def _download_and_cache(
        self, source_key: str, library_name: str, organism: str
    ) -> Tuple[Dict[str, List[str]], Dict]:
        """Download gene sets with gseapy and cache them as GMT"""
        library = gp.get_library(name=library_name, organism=organism)

        gene_sets = {}
        for term, genes_data in library.items():
            # genes_data can be either a list or a tab-separated string
            if isinstance(genes_data, (list, tuple, set)):
                genes = [str(g).strip() for g in genes_data if str(g).strip()]
            else:
                genes = [g.strip() for g in str(genes_data).split('\t') if g.strip()]
            if genes:
                gene_sets[term] = genes

        cache_file = self.cache_dir / f"{source_key}.gmt"
        save_gmt(gene_sets, str(cache_file))

        metadata = {
            'source': source_key,
            'version': library_name,
            'download_date': datetime.now().isoformat(),
            'file_hash': self._calculate_hash(cache_file),
            'stats': get_gene_set_stats(gene_sets),
        }
        self.metadata[source_key] = {
            'cache_file': str(cache_file),
            'download_date': metadata['download_date'],
            'hash': metadata['file_hash'],
            'version': library_name,
        }
        self._save_metadata()

        logging.info(f"Downloaded {len(gene_sets)} gene sets from {library_name}")
        return gene_sets, metadata

    def load_custom(self, path: str) -> Tuple[Dict[str, List[str]], Dict]:
        """
        Load a custom signature file (GMT or term/gene table).

        Custom files are never copied into the cache; their hash is recorded
        so a run can be traced back to the exact file.
        """
        path = Path(path)
        gene_sets = load_term2gene(str(path))
        metadata = {
            'source': path.name,
            'version': 'custom',
            'file_hash': self._calculate_hash(path),
            'stats': get_gene_set_stats(gene_sets),
        }
        return gene_sets, metadata

    def clear_cache(self, source_key: Optional[str] = None):
        """
        Clear cached gene sets.

        Args:
            source_key: Specific source to clear, or None for all
        """
        if source_key:
            if source_key in self.metadata:
                Path(self.metadata[source_key]['cache_file']).unlink(missing_ok=True)
                del self.metadata[source_key]
                self._save_metadata()
                logging.info(f"Cleared cache for {source_key}")
        else:
            for file in self.cache_dir.glob("*.gmt"):
                file.unlink()
            self.metadata = {}
            self._save_metadata()
            logging.info("Cleared all gene set cache")


def to_key_space(gene_sets: Dict[str, List[str]], table: MappingTable) -> Dict[str, List[str]]:
    """
    Translate gene set members into database keys.

    Members without a key are dropped; a member with several keys
    contributes all of them. Sets left empty are dropped.
    """
    translated = {}
    dropped = 0
    for term, genes in gene_sets.items():
        keys = []
        for gene in genes:
            targets = table.targets(gene)
            if not targets:
                dropped += 1
            keys.extend(targets)
        keys = list(dict.fromkeys(keys))
        if keys:
            translated[term] = keys

    logging.info(
        f"Translated {len(translated)}/{len(gene_sets)} gene sets to database keys "
        f"({dropped} member names without a key)"
    )
    return translated


def translate_gene_sets(
    gene_sets: Dict[str, List[str]],
    gene_type: str,
    key_lookup,
) -> Dict[str, List[str]]:
    """
    Bring gene sets of a given identifier type into the database key space.

    Args:
        gene_sets: Term -> member identifiers
        gene_type: 'entrez' (already keys), 'symbol' or 'ensembl'
        key_lookup: MyGeneKeyLookup-like object
    """
    if gene_type not in CUSTOM_GENE_TYPES:
        raise ValueError(f"Unknown gene type '{gene_type}'. Use one of: {', '.join(CUSTOM_GENE_TYPES)}")
    if gene_type == 'entrez':
        return {term: [str(g) for g in genes] for term, genes in gene_sets.items()}

    members = sorted({g for genes in gene_sets.values() for g in genes})
    if gene_type == 'symbol':
        table = key_lookup.symbol_to_key(members)
    else:
        table = key_lookup.accession_to_key(members)
    return to_key_space(gene_sets, table)
