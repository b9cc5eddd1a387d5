"""Exceptions raised by adnacons.

Every failure that should abort a run derives from one of these so the CLI can
report it uniformly before any output is published.
"""

from __future__ import annotations

from typing import Iterable, Optional


class InputValidationError(ValueError):
    """Raised when inputs or parameters are invalid. Always raised before scanning."""


class MissingProfileError(InputValidationError):
    """Raised when read groups in the input have no damage profile to resolve to."""

    def __init__(self, read_groups: Iterable[str]) -> None:
        self.read_groups = sorted(set(read_groups))
        super().__init__(
            "No damage profile for read group(s): "
            + ", ".join(self.read_groups)
            + ". Add them to the profile table or provide a 'default' profile."
        )


class ReadOrderError(RuntimeError):
    """Raised when the read stream is not coordinate-sorted."""

    def __init__(
        self,
        message: str,
        *,
        read_name: Optional[str] = None,
        coordinate: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.read_name = read_name
        self.coordinate = coordinate
