"""Sphinx configuration for the Worship Team API reference.

Build with ``sphinx-build -b html docs docs/_build`` after installing the
``docs`` extra. Autodoc imports the application modules, so the storage
backend is forced to memory to keep the build away from any database.
"""

import os
import sys
from datetime import date
from importlib.metadata import PackageNotFoundError, version as dist_version

ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
sys.path.insert(0, ROOT)
os.environ.setdefault("STORAGE_BACKEND", "memory")
os.environ.setdefault("SEED_DEMO_DATA", "false")

project = "Worship Team API"
author = "Worship Team"
copyright = f"{date.today().year}, {author}"

try:
    release = dist_version("worship-team-api")
except PackageNotFoundError:
    # building from a checkout that was never installed
    release = "0.1.0"
version = ".".join(release.split(".")[:2])

extensions = [
    "sphinx.ext.autodoc",
    "sphinx.ext.napoleon",
    "sphinx.ext.viewcode",
]

# docstrings follow the Google style (Args/Returns/Raises)
napoleon_google_docstring = True
napoleon_numpy_docstring = False

autodoc_member_order = "bysource"
autodoc_typehints = "description"
autodoc_default_options = {"undoc-members": False, "show-inheritance": True}

exclude_patterns = ["_build"]

html_theme = "alabaster"
html_title = f"{project} {release}"
