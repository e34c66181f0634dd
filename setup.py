#!/usr/bin/env python3
"""Setup configuration for station-finder package."""

from setuptools import setup, find_packages
from pathlib import Path

# Read long description from README
readme_path = Path(__file__).parent / "README.md"
long_description = readme_path.read_text() if readme_path.exists() else ""

setup(
    name="station-finder",
    version="1.0.0",
    description="Candidate station identification for FM tuners without RDS",
    long_description=long_description,
    long_description_content_type="text/markdown",
    license="MIT",
    
    package_dir={"": "src"},
    packages=find_packages(where="src"),
    
    python_requires=">=3.9",
    
    install_requires=[
        "numpy>=1.20.0",
        "toml>=0.10.0",
        "aiohttp>=3.8.0",
    ],
    
    extras_require={
        "dev": [
            "pytest>=7.0.0",
            "pytest-cov>=3.0.0",
        ],
    },
    
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: End Users/Desktop",
        "License :: OSI Approved :: MIT License",
        "Operating System :: POSIX :: Linux",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Topic :: Communications :: Ham Radio",
        "Framework :: AsyncIO",
    ],
    
    keywords="fm radio tuner dx rds pi logo websocket",
)
