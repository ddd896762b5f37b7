"""
Species Support for MultiEnrich

Maps a species name to the identifiers needed by the external services:
- NCBI taxon id (mygene.info queries)
- Enrichr organism and library names (gseapy downloads)
"""

import logging
from typing import Dict, List, Optional
from dataclasses import dataclass, field


# Supported species configuration
SUPPORTED_SPECIES = {
    'human': {
        'scientific_name': 'Homo sapiens',
        'taxon_id': 9606,
        'ensembl_prefix': 'ENSG',
        'enrichr_organism': 'Human',
        'common_aliases': ['human', 'hsa', 'hs', 'homo sapiens', 'h.sapiens'],
        'libraries': {
            'GO-BP': 'GO_Biological_Process_2023',
            'GO-MF': 'GO_Molecular_Function_2023',
            'GO-CC': 'GO_Cellular_Component_2023',
            'KEGG': 'KEGG_2021_Human',
            'WP': 'WikiPathway_2023_Human',
            'RP': 'Reactome_2022',
            # Enrichr has no Disease Ontology annotation library; DISEASES names its terms by DO disease
            'DO': 'Jensen_DISEASES',
            'DGN': 'DisGeNET',
        },
    },
    'mouse': {
        'scientific_name': 'Mus musculus',
        'taxon_id': 10090,
        'ensembl_prefix': 'ENSMUSG',
        'enrichr_organism': 'Mouse',
        'common_aliases': ['mouse', 'mmu', 'mm', 'mus musculus', 'm.musculus'],
        'libraries': {
            'GO-BP': 'GO_Biological_Process_2023',
            'GO-MF': 'GO_Molecular_Function_2023',
            'GO-CC': 'GO_Cellular_Component_2023',
            'KEGG': 'KEGG_2019_Mouse',
            'WP': 'WikiPathways_2019_Mouse',
            'RP': 'Reactome_2022',
        },
    },
}


@dataclass
class SpeciesInfo:
    """Resolved species configuration"""
    species_key: str  # 'human', 'mouse'
    scientific_name: str
    taxon_id: int
    ensembl_prefix: str
    enrichr_organism: str
    libraries: Dict[str, str] = field(default_factory=dict)

    def library_for(self, database_label: str) -> Optional[str]:
        """Enrichr library backing a built-in database, None when unsupported"""
        return self.libraries.get(database_label)


def resolve_species(species: str) -> SpeciesInfo:
    """
    Resolve a user-supplied species name or alias.

    Args:
        species: Species name or alias (e.g. 'human', 'hsa', 'Mus musculus')

    Returns:
        SpeciesInfo for the matching species

    Raises:
        ValueError: If the species is not supported
    """
    species_lower = str(species).strip().lower()

    for species_key, config in SUPPORTED_SPECIES.items():
        if species_lower == species_key or species_lower in config['common_aliases']:
            return SpeciesInfo(
                species_key=species_key,
                scientific_name=config['scientific_name'],
                taxon_id=config['taxon_id'],
                ensembl_prefix=config['ensembl_prefix'],
                enrichr_organism=config['enrichr_organism'],
                libraries=dict(config['libraries']),
            )

    raise ValueError(
        f"Unsupported species: '{species}'. "
        f"Supported: {', '.join(SUPPORTED_SPECIES.keys())}"
    )


def get_supported_species() -> List[str]:
    """Get list of supported species keys"""
    return list(SUPPORTED_SPECIES.keys())


def unsupported_databases(species_info: SpeciesInfo, labels: List[str]) -> List[str]:
    """Database labels without a library for this species"""
    missing = [label for label in labels if species_info.library_for(label) is None]
    if missing:
        logging.info(f"No {species_info.species_key} library for: {', '.join(missing)}")
    return missing
