from setuptools import setup, find_packages
from pathlib import Path

# Read the contents of README.md for long description
this_directory = Path(__file__).parent
long_description = (this_directory / "README.md").read_text(encoding='utf-8')

setup(
    name="geneclust",
    version="0.1.0",

    # Descriptions
    description="Distance-based hierarchical and k-means clustering of gene sequence alignments",
    long_description=long_description,
    long_description_content_type="text/markdown",

    # License
    license="MIT",

    # Package discovery
    packages=find_packages(exclude=["tests", "tests.*", "docs"]),

    # Python version requirement
    python_requires=">=3.8",

    # Core dependencies
    install_requires=[
        "biopython>=1.79",
        "pandas>=1.3.0",
        "scipy>=1.7.0",
        "numpy>=1.21.0",
        "pyyaml>=5.4",
    ],

    # Optional dependencies for specific features
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=3.0.0",
        ],
    },

    # Command-line interface
    entry_points={
        'console_scripts': [
            'geneclust=geneclust.cli:main',
        ],
    },

    # PyPI classifiers
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Science/Research",
        "Topic :: Scientific/Engineering :: Bio-Informatics",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Operating System :: OS Independent",
    ],

    # Keywords for PyPI search
    keywords=[
        "bioinformatics",
        "genetic distance",
        "TN93",
        "hierarchical clustering",
        "UPGMA",
        "k-means",
        "silhouette",
        "sequence analysis",
    ],

    zip_safe=False,
)
