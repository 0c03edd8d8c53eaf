"""
Engine Unit Tests
=================

[ENGINE] Binary materialization and command line construction.
"""

import os
import stat
import sys

import pytest

from config import NattyConfig
from core.nat import EngineBinary, EngineSetupError, build_params


class TestBuildParams:
    """Test engine command line flags."""

    def test_answer(self):
        assert build_params(offer=False, debug=False) == []

    def test_offer(self):
        assert build_params(offer=True, debug=False) == ["-offer"]

    def test_debug_appended(self):
        assert build_params(offer=True, debug=True) == ["-offer", "-debug"]
        assert build_params(offer=False, debug=True) == ["-debug"]


class TestEngineBinaryFromPath:
    """Test using an existing engine file."""

    def test_missing_file(self, temp_dir):
        with pytest.raises(EngineSetupError, match="not found"):
            EngineBinary.from_path(temp_dir / "natty")

    def test_not_executable(self, temp_dir):
        path = temp_dir / "natty"
        path.write_bytes(b"#!/bin/sh\n")
        path.chmod(0o644)

        with pytest.raises(EngineSetupError, match="not executable"):
            EngineBinary.from_path(path)

    def test_interpreter_skips_exec_check(self, temp_dir):
        path = temp_dir / "fake_natty.py"
        path.write_text("print('hi')\n")
        path.chmod(0o644)

        binary = EngineBinary.from_path(path, interpreter=sys.executable)

        assert binary.command("-offer") == [sys.executable, str(path), "-offer"]

    def test_command(self, temp_dir):
        path = temp_dir / "natty"
        path.write_bytes(b"#!/bin/sh\n")
        path.chmod(0o755)

        binary = EngineBinary.from_path(path)

        assert binary.command() == [str(path)]
        assert binary.command("-offer", "-debug") == [str(path), "-offer", "-debug"]


class TestEngineBinaryFromBytes:
    """Test extracting embedded engine bytes."""

    def test_extract(self, temp_dir):
        data = b"#!/bin/sh\necho natty\n"

        binary = EngineBinary.from_bytes(data, temp_dir / "cache")

        assert binary.path.read_bytes() == data
        assert binary.path.parent == temp_dir / "cache"
        assert binary.path.name.startswith("natty-")
        assert os.access(binary.path, os.X_OK)

    def test_reuses_cached_file(self, temp_dir):
        data = b"#!/bin/sh\necho natty\n"

        first = EngineBinary.from_bytes(data, temp_dir)
        mtime = first.path.stat().st_mtime_ns
        second = EngineBinary.from_bytes(data, temp_dir)

        assert second.path == first.path
        assert second.path.stat().st_mtime_ns == mtime

    def test_different_bytes_different_file(self, temp_dir):
        first = EngineBinary.from_bytes(b"one", temp_dir)
        second = EngineBinary.from_bytes(b"two", temp_dir)

        assert first.path != second.path

    def test_restores_exec_bit(self, temp_dir):
        data = b"#!/bin/sh\n"
        binary = EngineBinary.from_bytes(data, temp_dir)
        binary.path.chmod(stat.S_IRUSR | stat.S_IWUSR)

        again = EngineBinary.from_bytes(data, temp_dir)

        assert os.access(again.path, os.X_OK)

    def test_default_cache_dir(self, temp_dir, monkeypatch):
        from config import config

        monkeypatch.setattr(config.natty, "cache_dir", str(temp_dir / "default"))

        binary = EngineBinary.from_bytes(b"#!/bin/sh\n")

        assert binary.path.parent == temp_dir / "default"

    def test_empty_data(self, temp_dir):
        with pytest.raises(EngineSetupError, match="empty"):
            EngineBinary.from_bytes(b"", temp_dir)

    def test_unwritable_cache(self, temp_dir):
        blocker = temp_dir / "file"
        blocker.write_text("not a directory")

        with pytest.raises(EngineSetupError, match="materialize"):
            EngineBinary.from_bytes(b"data", blocker / "cache")


class TestEngineBinaryLocate:
    """Test locating the engine from configuration."""

    def test_explicit_path(self, temp_dir):
        path = temp_dir / "natty"
        path.write_bytes(b"#!/bin/sh\n")
        path.chmod(0o755)

        binary = EngineBinary.locate(NattyConfig(binary_path=str(path)))

        assert binary.path == path

    def test_path_lookup(self, temp_dir, monkeypatch):
        path = temp_dir / "natty-test-engine"
        path.write_bytes(b"#!/bin/sh\n")
        path.chmod(0o755)
        monkeypatch.setenv("PATH", str(temp_dir))

        binary = EngineBinary.locate(NattyConfig(binary_path="", binary_name="natty-test-engine"))

        assert binary.path == path

    def test_not_in_path(self, temp_dir, monkeypatch):
        monkeypatch.setenv("PATH", str(temp_dir))

        with pytest.raises(EngineSetupError, match="not found in PATH"):
            EngineBinary.locate(NattyConfig(binary_path="", binary_name="natty-missing"))
