"""
ensembl-seqproxy - Ensembl REST sequences with mapped features

Resilient retrieval of genomic, cDNA, CDS, protein and gene sequences.
"""

import re
from pathlib import Path

from setuptools import setup, find_packages

here = Path(__file__).parent
long_description = (here / "README.md").read_text()
version = re.search(r'__version__ = "([^"]+)"',
                    (here / "src" / "ensembl_seqproxy" / "__init__.py").read_text()).group(1)

setup(
    name="ensembl-seqproxy",
    version=version,
    description="Ensembl REST sequence retrieval with feature mapping onto cDNA, CDS, protein and genes",
    long_description=long_description,
    long_description_content_type="text/markdown",
    keywords=["ensembl", "rest", "bioinformatics", "sequence", "coordinate mapping"],
    packages=find_packages(where="src"),
    package_dir={"": "src"},
    classifiers=[
        "Development Status :: 4 - Beta",
        "Environment :: Console",
        "Intended Audience :: Science/Research",
        "Topic :: Scientific/Engineering :: Bio-Informatics",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.8",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    python_requires=">=3.8",
    install_requires=[
        "biopython>=1.79",
        "requests>=2.26.0",
        "urllib3>=1.26.0",
        "click>=8.0.0",
    ],
    extras_require={
        "dev": [
            "pytest>=6.0",
            "pytest-cov>=2.0",
            "black>=21.0",
            "mypy>=0.900",
        ],
    },
    entry_points={
        "console_scripts": [
            "ensembl-seqproxy=ensembl_seqproxy.cli:cli",
        ],
    },
)
