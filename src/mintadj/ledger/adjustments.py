# src/mintadj/ledger/adjustments.py
from __future__ import annotations

"""Blocks-minted adjustment dataset.

The dataset is a flat JSON list with no wrapping root object:

    [
      {"address": "Q...", "blocksMintedAdjustment": 1309},
      ...
    ]

It is loaded once at startup and never mutated afterwards. Anything the
loader cannot interpret raises DatasetError: the expected digest is a
consensus parameter, so a node must not start with a dataset it cannot read.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr, TypeAdapter, ValidationError

from mintadj.crypto.digest import compute_digest
from mintadj.runtime.errors import DatasetError
from mintadj.util.structured_logging import log_event

log = logging.getLogger("mintadj.ledger.adjustments")

BUNDLED_ADJUSTMENT_SOURCE = "blocks-minted-adjustment.json"


@dataclass(frozen=True, slots=True)
class AdjustmentRecord:
    """(address, signed block-count delta).

    Address is the identity. Deduplication is done explicitly with an
    address-keyed dict (see dedupe_by_address), never through set membership.
    """

    address: str
    delta: int

    def negated(self) -> "AdjustmentRecord":
        return AdjustmentRecord(address=self.address, delta=-int(self.delta))

    def __str__(self) -> str:
        return f"{self.address} has blocks minted adjustment {self.delta}"


def dedupe_by_address(records: Iterable[AdjustmentRecord]) -> Dict[str, AdjustmentRecord]:
    """Collapse records into an address-keyed dict. Last-seen delta wins."""
    out: Dict[str, AdjustmentRecord] = {}
    for rec in records:
        out[rec.address] = rec
    return out


@dataclass(frozen=True, slots=True)
class AdjustmentDataset:
    records: Tuple[AdjustmentRecord, ...]
    source: str = ""

    def __iter__(self) -> Iterator[AdjustmentRecord]:
        return iter(self.records)

    def __len__(self) -> int:
        return len(self.records)

    @property
    def addresses(self) -> List[str]:
        return [r.address for r in self.records]

    def digest(self) -> Optional[str]:
        return compute_digest(self.addresses)


class _AdjustmentEntry(BaseModel):
    model_config = ConfigDict(extra="forbid")

    address: StrictStr = Field(..., min_length=1)
    blocks_minted_adjustment: StrictInt = Field(..., alias="blocksMintedAdjustment")


_ENTRIES = TypeAdapter(List[_AdjustmentEntry])


def parse_adjustment_dataset(raw: str | bytes, *, source: str = "") -> AdjustmentDataset:
    """Parse and validate dataset JSON text.

    Rejects a wrapping root object, unknown keys, non-integer deltas, blank
    or whitespace-padded addresses and duplicate addresses. Addresses are
    kept exactly as written.
    """
    try:
        obj = json.loads(raw)
    except ValueError as e:
        raise DatasetError("dataset_invalid", "json_decode_failed", {"source": source, "error": str(e)}) from e

    if not isinstance(obj, list):
        raise DatasetError("dataset_invalid", "expected_json_list", {"source": source, "got": type(obj).__name__})

    try:
        entries = _ENTRIES.validate_python(obj)
    except ValidationError as e:
        raise DatasetError(
            "dataset_invalid",
            "schema_validation_failed",
            {"source": source, "errors": e.errors(include_url=False)},
        ) from e

    seen: Dict[str, int] = {}
    records: List[AdjustmentRecord] = []
    for i, entry in enumerate(entries):
        # Addresses are identities and are hashed verbatim; never rewrite them.
        address = entry.address
        if not address.strip():
            raise DatasetError("dataset_invalid", "blank_address", {"source": source, "index": i})
        if address != address.strip():
            raise DatasetError("dataset_invalid", "address_whitespace", {"source": source, "index": i, "address": address})
        if address in seen:
            raise DatasetError(
                "dataset_invalid",
                "duplicate_address",
                {"source": source, "address": address, "first_index": seen[address], "index": i},
            )
        seen[address] = i
        records.append(AdjustmentRecord(address=address, delta=int(entry.blocks_minted_adjustment)))

    return AdjustmentDataset(records=tuple(records), source=source)


def bundled_adjustment_path() -> Path:
    return Path(__file__).resolve().parent / BUNDLED_ADJUSTMENT_SOURCE


def load_adjustment_dataset(path: str | Path | None = None) -> AdjustmentDataset:
    """Load the adjustment dataset from `path` (default: the bundled resource)."""
    p = Path(path) if path else bundled_adjustment_path()
    try:
        raw = p.read_bytes()
    except OSError as e:
        raise DatasetError("dataset_unreadable", "read_failed", {"source": str(p), "error": str(e)}) from e

    dataset = parse_adjustment_dataset(raw, source=str(p))
    log_event(
        log,
        "adjustment_dataset_loaded",
        source=str(p),
        records=len(dataset),
        digest=dataset.digest(),
    )
    return dataset


__all__ = [
    "AdjustmentDataset",
    "AdjustmentRecord",
    "BUNDLED_ADJUSTMENT_SOURCE",
    "bundled_adjustment_path",
    "dedupe_by_address",
    "load_adjustment_dataset",
    "parse_adjustment_dataset",
]
