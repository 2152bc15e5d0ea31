"""Ensembl sequence proxy.

Fetches genomic, cDNA, CDS, protein and gene sequences from the Ensembl REST
API with their features mapped onto them, cross-references attached and
protein products linked through 3:1 coordinate maps.
"""

__version__ = "1.0.0"
