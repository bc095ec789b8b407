#!/usr/bin/env python
"""
Setup script for Spatial Engine package.

This package provides spatial weights, global and local autocorrelation
statistics, spatial regression models with impacts and diagnostics, and
geographically weighted regression.
"""
from setuptools import setup, find_packages

setup(
    name="spatial_engine",
    version="1.0.0",
    description="Spatial statistics engine: weights, autocorrelation, spatial regression and GWR",
    author="Mohammad Al-Akkaoui",
    author_email="mohammad@al-akkaoui.com",
    packages=find_packages(include=["spatial_engine", "spatial_engine.*"]),
    include_package_data=True,
    install_requires=[
        "numpy>=1.22.0",
        "pandas>=1.3.0",
        "scipy>=1.9.0",
        "statsmodels>=0.13.0",
        "geopandas>=0.12.0",
        "shapely>=2.0.0",
        "libpysal>=4.7.0",
        "pyyaml>=6.0",
        "pydantic>=2.0.0",
        "typer>=0.9.0",
    ],
    extras_require={
        "dev": [
            "pytest>=6.0.0",
            "pytest-cov>=2.12.0",
            "esda>=2.4.0",
            "spreg>=1.4.0",
        ],
    },
    entry_points={
        "console_scripts": [
            "spatial-engine=spatial_engine.cli.app:app",
        ],
    },
    classifiers=[
        "Development Status :: 4 - Beta",
        "Intended Audience :: Science/Research",
        "Topic :: Scientific/Engineering :: GIS",
        "Programming Language :: Python :: 3.9",
        "Programming Language :: Python :: 3.10",
    ],
    python_requires=">=3.9",
)
