"""Setup script for backward compatibility with older tools."""

from setuptools import setup, find_packages
import os

# Read version from _version.py
version = {}
with open(os.path.join("pymotum", "_version.py")) as f:
    exec(f.read(), version)

# Read README
with open("README.md", "r", encoding="utf-8") as f:
    long_description = f.read()

setup(
    name="pymotum",
    version=version["__version__"],
    author="Nick Doulos",
    author_email="contact@nickdoulos.com",
    description="A Python library for fitting state-space and move-persistence models to animal telemetry",
    long_description=long_description,
    long_description_content_type="text/markdown",
    url="https://github.com/Nick-Doulos/pymotum",
    project_urls={
        "Bug Tracker": "https://github.com/Nick-Doulos/pymotum/issues",
        "Documentation": "https://github.com/Nick-Doulos/pymotum#readme",
        "Source Code": "https://github.com/Nick-Doulos/pymotum",
    },
    packages=find_packages(exclude=["tests", "tests.*", "docs", "examples"]),
    package_data={"pymotum": ["data/*.csv"]},
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Science/Research",
        "License :: OSI Approved :: MIT License",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3.13",
        "Topic :: Scientific/Engineering :: GIS",
        "Topic :: Scientific/Engineering :: Bio-Informatics",
    ],
    python_requires=">=3.9",
    install_requires=[
        "pandas>=1.5.0",
        "numpy>=1.22.0",
        "scipy>=1.9.0",
        "pyproj>=3.3.0",
        "shapely>=2.0.0",
        "folium>=0.12.0",
        "matplotlib>=3.6.0",
        "branca>=0.4.0",
        "geopandas>=0.14.0",
        "polars>=0.15.0",
        "pyarrow>=10.0.0",
        "tqdm>=4.60.0",
    ],
    extras_require={
        "test": ["pytest>=7.0"],
    },
    entry_points={
        "console_scripts": ["pymotum=pymotum.cli:main"],
    },
    keywords="animal-telemetry state-space-model argos movement-ecology move-persistence geospatial",
    include_package_data=True,
    zip_safe=False,
)
