#!/usr/bin/env python3
# =============================================================================
#  borrowsim — setup.py
#
#  Build-system requirements and tool settings live in pyproject.toml;
#  the package metadata lives here.
#
#      pip install -e ".[dev]"
#      python -m build
#      python -m pytest
# =============================================================================

from __future__ import annotations

import re
from pathlib import Path

from setuptools import setup, find_packages

# ---------------------------------------------------------------------------
#  Read the version from borrowsim/__init__.py so there is a single source
#  of truth.
# ---------------------------------------------------------------------------
_HERE = Path(__file__).resolve().parent


def _read_version() -> str:
    """Extract ``__version__`` from the borrowsim package."""
    init = _HERE / "borrowsim" / "__init__.py"
    text = init.read_text(encoding="utf-8")
    match = re.search(r'^__version__\s*=\s*"([^"]+)"', text, re.MULTILINE)
    if match:
        return match.group(1)
    return "0.0.0"


def _read_long_description() -> str:
    """Read README.md for the long description."""
    readme = _HERE / "README.md"
    if readme.exists():
        return readme.read_text(encoding="utf-8")
    return ""


def _read_requirements() -> list[str]:
    """Read requirements.txt if it exists."""
    req_file = _HERE / "requirements.txt"
    if req_file.exists():
        lines = req_file.read_text(encoding="utf-8").splitlines()
        return [
            ln.strip()
            for ln in lines
            if ln.strip() and not ln.strip().startswith("#")
        ]
    return []


# ---------------------------------------------------------------------------
#  The ``borrowsim`` command is exposed through console_scripts; setuptools
#  generates the wrapper that calls oplog.main:main.
# ---------------------------------------------------------------------------
setup(
    name="borrowsim",
    version=_read_version(),
    description=(
        "Memory-model permission simulator: stack frames, heap allocations, "
        "Read/Write/Own permissions, moves and borrows."
    ),
    long_description=_read_long_description(),
    long_description_content_type="text/markdown",
    license="MIT",
    author="borrowsim contributors",
    python_requires=">=3.10",
    packages=find_packages(
        include=[
            "borrowsim",
            "borrowsim.*",
            "oplog",
            "oplog.*",
        ],
        exclude=[
            "tests",
            "tests.*",
            "examples",
            "examples.*",
        ],
    ),
    package_data={
        "borrowsim": ["py.typed"],
        "oplog": ["py.typed"],
    },
    install_requires=_read_requirements(),
    extras_require={
        "dev": [
            "pytest>=7.0",
            "pytest-cov>=4.0",
            "ruff>=0.4",
            "mypy>=1.10",
            "black>=24.0",
            "isort>=5.13",
        ],
    },
    entry_points={
        "console_scripts": [
            "borrowsim=oplog.main:main",
        ],
    },
    classifiers=[
        "Development Status :: 3 - Alpha",
        "Intended Audience :: Developers",
        "Intended Audience :: Education",
        "License :: OSI Approved :: MIT License",
        "Operating System :: OS Independent",
        "Programming Language :: Python :: 3",
        "Programming Language :: Python :: 3.10",
        "Programming Language :: Python :: 3.11",
        "Programming Language :: Python :: 3.12",
        "Programming Language :: Python :: 3.13",
        "Topic :: Software Development :: Quality Assurance",
        "Topic :: Education",
        "Typing :: Typed",
    ],
    keywords=[
        "ownership",
        "borrow-checker",
        "memory-safety",
        "simulator",
        "permissions",
        "use-after-move",
        "double-free",
    ],
    zip_safe=False,
)
