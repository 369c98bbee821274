# borrowsim/permissions.py
"""
Permission lattice for the simulator.

Every binding carries a triple of independent capabilities:

    R  read the value (or, for a reference, read the pointer)
    W  overwrite the value in place
    O  own it: move it elsewhere, or destroy it (free its heap memory)

During a borrow the triple is split between the owner, the reference
binding (which owns its pointer) and the reference's *view* of the
referent data.  The triple is immutable; every transition produces a
new value, which is what lets the borrow engine stash and restore an
owner's exact pre-borrow permissions.
"""

from __future__ import annotations

from dataclasses import dataclass, replace


@dataclass(frozen=True)
class PermissionState:
    """Immutable (read, write, own) triple."""

    read: bool = False
    write: bool = False
    own: bool = False

    # -- Constructors ------------------------------------------------------

    @classmethod
    def full(cls) -> "PermissionState":
        return cls(True, True, True)

    @classmethod
    def none(cls) -> "PermissionState":
        return cls(False, False, False)

    @classmethod
    def parse(cls, text: str) -> "PermissionState":
        """Build a triple from its three-character form, e.g. ``"R-O"``."""
        if len(text) != 3:
            raise ValueError(f"permission string must have 3 characters: {text!r}")
        flags = []
        for ch, letter in zip(text.upper(), "RWO"):
            if ch == letter:
                flags.append(True)
            elif ch == "-":
                flags.append(False)
            else:
                raise ValueError(f"bad permission character {ch!r} in {text!r}")
        return cls(*flags)

    # -- Transitions -------------------------------------------------------

    def revoke(self, *, read: bool = False, write: bool = False,
               own: bool = False) -> "PermissionState":
        """Return a copy with the flagged permissions removed."""
        return replace(
            self,
            read=self.read and not read,
            write=self.write and not write,
            own=self.own and not own,
        )

    def grant(self, *, read: bool = False, write: bool = False,
              own: bool = False) -> "PermissionState":
        """Return a copy with the flagged permissions added."""
        return replace(
            self,
            read=self.read or read,
            write=self.write or write,
            own=self.own or own,
        )

    # -- Queries -----------------------------------------------------------

    def allows(self, required: "PermissionState") -> bool:
        """True when every permission in *required* is present here."""
        return ((self.read or not required.read)
                and (self.write or not required.write)
                and (self.own or not required.own))

    def missing(self, required: "PermissionState") -> "PermissionState":
        """The part of *required* that this triple does not hold."""
        return PermissionState(
            required.read and not self.read,
            required.write and not self.write,
            required.own and not self.own,
        )

    @property
    def is_empty(self) -> bool:
        return not (self.read or self.write or self.own)

    def __str__(self) -> str:
        return "".join((
            "R" if self.read else "-",
            "W" if self.write else "-",
            "O" if self.own else "-",
        ))


FULL = PermissionState.full()
NONE = PermissionState.none()
READ_ONLY = PermissionState(read=True)
READ_WRITE = PermissionState(read=True, write=True)
# A reference binding reads and owns its pointer, never rewrites it.
POINTER = PermissionState(read=True, own=True)
