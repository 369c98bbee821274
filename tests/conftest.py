# tests/conftest.py
"""Shared fixtures for the borrowsim / oplog test suite."""

import textwrap

import pytest

from borrowsim.simulator import Simulator, SimulatorConfig
from oplog.parser import parse


@pytest.fixture
def sim():
    """A fresh simulator with one frame already entered."""
    return Simulator(SimulatorConfig(implicit_root_frame=True))


@pytest.fixture
def run_ops():
    """Run a list of Operations on a fresh simulator; returns the result."""
    def _run(ops, **config):
        return Simulator(SimulatorConfig(**config)).run(ops)
    return _run


@pytest.fixture
def run_log():
    """Parse oplog text (dedented) and run it; returns the result."""
    def _run(text, **config):
        ops = parse(textwrap.dedent(text))
        return Simulator(SimulatorConfig(**config)).run(ops)
    return _run


@pytest.fixture
def write_log(tmp_path):
    """Write *text* to a file under tmp_path and return its path as str."""
    def _write(text, name="session.oplog"):
        path = tmp_path / name
        path.write_text(textwrap.dedent(text), encoding="utf-8")
        return str(path)
    return _write
