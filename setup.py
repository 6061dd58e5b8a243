"""
Setup script for nutrient_limitation package
"""

from setuptools import setup, find_packages
from pathlib import Path

# Read the README file for long description
readme_file = Path(__file__).parent / "README.md"
if readme_file.exists():
    long_description = readme_file.read_text(encoding='utf-8')
else:
    long_description = "Bayesian chlorophyll-nutrient models and lake nutrient limitation"

setup(
    name="nutrient_limitation",
    version="0.1.0",
    description="Bayesian hierarchical models of lake chlorophyll and nutrient limitation",
    long_description=long_description,
    long_description_content_type="text/markdown",
    author="Lake Nutrient Analysis Project",
    packages=find_packages(include=["nutrient_limitation", "nutrient_limitation.*"]),
    python_requires=">=3.9",
    install_requires=[
        "numpy>=1.22",
        "pandas>=1.4,<3",
        "pymc>=5.0",
        "arviz>=0.15,<1.0",
    ],
    extras_require={
        "dev": [
            "pytest>=7.0",
            "black>=22.0",
            "flake8>=4.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "bnla-analysis=nutrient_limitation.main:main",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Science/Research",
        "Topic :: Scientific/Engineering",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
    ],
    keywords="lakes limnology chlorophyll nutrients bayesian mcmc",
)
