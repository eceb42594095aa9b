"""PAIA document status codes."""

from __future__ import annotations

from enum import IntEnum
from typing import Any, Optional


class PaiaStatus(IntEnum):
    """Relation of a document to a patron, as reported by PAIA core."""

    NO_RELATION = 0
    RESERVED = 1
    ORDERED = 2
    HELD = 3
    PROVIDED = 4
    REJECTED = 5

    @property
    def label(self) -> str:
        return self.name.lower().replace("_", " ")

    @classmethod
    def coerce(cls, value: Any) -> Optional["PaiaStatus"]:
        """Return the status for ``value`` (int or numeric string), or None."""
        if isinstance(value, bool):
            return None
        try:
            if isinstance(value, int):
                return cls(value)
            return cls(int(str(value).strip()))
        except (TypeError, ValueError):
            return None


def status_label(value: Any) -> str:
    """Map a status code to its label ("reserved", "held", ...).

    Unknown or missing codes map to an empty string.
    """
    status = PaiaStatus.coerce(value)
    return status.label if status is not None else ""


def status_equals(value: Any, status: PaiaStatus) -> bool:
    return PaiaStatus.coerce(value) is status
