from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class AdjustmentError(Exception):
    """Canonical error type for blocks-minted adjustment failures."""

    code: str
    reason: str
    details: Any | None = None

    def __str__(self) -> str:  # pragma: no cover
        if self.details is None:
            return f"{self.code}:{self.reason}"
        return f"{self.code}:{self.reason}:{self.details}"


@dataclass
class DataError(AdjustmentError):
    """Persistence failure raised by an account repository.

    Fatal to the current apply/orphan call. The enclosing block transaction
    must roll back since partial writes may already exist.
    """


@dataclass
class DatasetError(AdjustmentError):
    """The bundled adjustment dataset could not be interpreted.

    Raised at load time; a node must refuse to start on this.
    """
