"""
Setup shim for scene2colmap.

Package metadata, dependencies and the scene2colmap console script are
declared in pyproject.toml. This file only lets older pip versions
perform editable installs.
"""

from setuptools import setup

setup()
