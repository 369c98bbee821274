# tests/test_permissions.py
"""
Tests for the immutable (R, W, O) permission triple.
"""

import pytest

from borrowsim.permissions import (
    FULL,
    NONE,
    POINTER,
    READ_ONLY,
    READ_WRITE,
    PermissionState,
)


class TestConstruction:

    def test_full_and_none(self):
        assert str(FULL) == "RWO"
        assert str(NONE) == "---"
        assert NONE.is_empty
        assert not FULL.is_empty

    def test_named_constants(self):
        assert str(READ_ONLY) == "R--"
        assert str(READ_WRITE) == "RW-"
        assert str(POINTER) == "R-O"

    def test_parse(self):
        assert PermissionState.parse("R-O") == POINTER
        assert PermissionState.parse("rw-") == READ_WRITE
        assert PermissionState.parse("---") == NONE

    @pytest.mark.parametrize("text", ["RW", "RWOX", "X--", "W--"])
    def test_parse_rejects_malformed(self, text):
        with pytest.raises(ValueError):
            PermissionState.parse(text)


class TestTransitions:

    def test_revoke_returns_new_value(self):
        shared_owner = FULL.revoke(write=True, own=True)
        assert shared_owner == READ_ONLY
        assert FULL == PermissionState(True, True, True)

    def test_revoke_missing_flag_is_harmless(self):
        assert READ_ONLY.revoke(write=True) == READ_ONLY

    def test_grant(self):
        assert READ_ONLY.grant(write=True) == READ_WRITE
        assert NONE.grant(read=True, own=True) == POINTER

    def test_frozen(self):
        with pytest.raises(AttributeError):
            FULL.read = False


class TestQueries:

    def test_allows(self):
        assert FULL.allows(READ_WRITE)
        assert READ_ONLY.allows(READ_ONLY)
        assert not READ_ONLY.allows(READ_WRITE)
        assert NONE.allows(NONE)

    def test_missing(self):
        assert str(READ_ONLY.missing(POINTER)) == "--O"
        assert FULL.missing(READ_WRITE).is_empty
