# src/mintadj/runtime/blocks_minted_adjustment.py
from __future__ import annotations

"""One-off blocks-minted correction run at the adjustment block.

The bundled dataset describes a conceptual one-time grant. Processing the
adjustment block removes it (FORWARD negates every delta); orphaning that
block restores it (REVERSE adds the deltas back). Both directions:

  1. transform the deltas
  2. collapse them into an address-keyed dict (last-seen wins)
  3. verify the address-set digest against the chain parameter
  4. only on a match, add the deltas through the repository and recalculate
     the minting level of every touched account

The transition is NOT idempotent. Running FORWARD twice without a REVERSE in
between applies the correction twice; the block pipeline must call each
trigger exactly once per block lifecycle event.

Atomicity is the caller's: wrap the trigger in the same write transaction as
the rest of the block so a DataError rolls back partial writes.
"""

import enum
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Sequence

from mintadj.crypto.digest import compute_digest, verify_digest
from mintadj.ledger.accounts import AccountRepository
from mintadj.ledger.adjustments import (
    AdjustmentDataset,
    AdjustmentRecord,
    dedupe_by_address,
    load_adjustment_dataset,
)
from mintadj.ledger.levels import recalc_account_level
from mintadj.runtime.chain_params import ChainParams, validate_chain_params
from mintadj.runtime.errors import AdjustmentError
from mintadj.util.structured_logging import log_event

log = logging.getLogger("mintadj.blocks_minted_adjustment")

Json = Dict[str, Any]


class Direction(enum.Enum):
    FORWARD = "process"
    REVERSE = "orphan"


@dataclass
class AdjustmentResult:
    ok: bool
    direction: Direction
    error: str = ""
    digest: str = ""
    processed_count: int = 0
    updated_count: int = 0
    duration_ms: int = 0


def transform_records(direction: Direction, records: Iterable[AdjustmentRecord]) -> Dict[str, AdjustmentRecord]:
    if direction is Direction.FORWARD:
        transformed = (r.negated() for r in records)
    else:
        transformed = (AdjustmentRecord(address=r.address, delta=int(r.delta)) for r in records)
    return dedupe_by_address(transformed)


def apply_blocks_minted_adjustment(
    direction: Direction,
    records: Iterable[AdjustmentRecord],
    repository: AccountRepository,
    *,
    expected_digest: str,
    thresholds: Sequence[int],
    strict_digest: bool = False,
) -> AdjustmentResult:
    """Apply (FORWARD) or reverse (REVERSE) the adjustment records.

    A digest mismatch leaves every account untouched and returns
    ok=False/error="digest_mismatch" (or raises AdjustmentError when
    strict_digest is set). Repository DataErrors propagate.
    """
    by_address = transform_records(direction, records)
    digest = compute_digest(by_address.keys()) or ""

    if not verify_digest(expected_digest, by_address.keys()):
        log.error(
            "blocks minted adjustment digest mismatch, skipping %s: expected=%s computed=%s",
            direction.value,
            expected_digest,
            digest,
        )
        if strict_digest:
            raise AdjustmentError(
                "digest_mismatch",
                "adjustment_dataset_does_not_match_chain_params",
                {"direction": direction.value, "expected": expected_digest, "computed": digest},
            )
        return AdjustmentResult(ok=False, direction=direction, error="digest_mismatch", digest=digest)

    started = time.monotonic()
    repository.update_blocks_minted_adjustments(list(by_address.values()))

    updated = 0
    for address in by_address:
        _level, changed = recalc_account_level(repository, address, thresholds)
        if changed:
            updated += 1

    result = AdjustmentResult(
        ok=True,
        direction=direction,
        digest=digest,
        processed_count=len(by_address),
        updated_count=updated,
        duration_ms=int((time.monotonic() - started) * 1000),
    )
    log_event(
        log,
        "blocks_minted_adjustment_applied",
        direction=direction.value,
        digest=digest,
        processed=result.processed_count,
        levels_changed=result.updated_count,
        duration_ms=result.duration_ms,
    )
    return result


@dataclass(frozen=True)
class AdjustmentContext:
    """Startup-built configuration handed to the block triggers."""

    params: ChainParams
    dataset: AdjustmentDataset


def build_adjustment_context(params: ChainParams, dataset: Optional[AdjustmentDataset] = None) -> AdjustmentContext:
    """Validate params and load the dataset once.

    DatasetError propagates; the node must not start without a readable
    dataset.
    """
    validate_chain_params(params)
    if dataset is None:
        dataset = load_adjustment_dataset(params.adjustment_source or None)

    actual = dataset.digest()
    if actual != params.expected_adjustment_digest:
        log.error(
            "bundled blocks minted adjustment does not match chain params: expected=%s computed=%s",
            params.expected_adjustment_digest,
            actual,
        )
    return AdjustmentContext(params=params, dataset=dataset)


def _block_height(block: Json) -> int:
    try:
        return int(block.get("height") or 0)
    except (TypeError, ValueError):
        return 0


def is_adjustment_block(block: Json, params: ChainParams) -> bool:
    return _block_height(block) == int(params.adjustment_height)


def _run(direction: Direction, context: AdjustmentContext, repository: AccountRepository) -> AdjustmentResult:
    params = context.params
    return apply_blocks_minted_adjustment(
        direction,
        context.dataset,
        repository,
        expected_digest=params.expected_adjustment_digest,
        thresholds=params.cumulative_blocks_by_level,
        strict_digest=params.strict_digest,
    )


def on_block_applied(block: Json, *, context: AdjustmentContext, repository: AccountRepository) -> Optional[AdjustmentResult]:
    """Block-processing hook. Returns None for blocks other than the adjustment block."""
    if not is_adjustment_block(block, context.params):
        return None
    return _run(Direction.FORWARD, context, repository)


def on_block_orphaned(block: Json, *, context: AdjustmentContext, repository: AccountRepository) -> Optional[AdjustmentResult]:
    """Block-orphaning hook. Returns None for blocks other than the adjustment block."""
    if not is_adjustment_block(block, context.params):
        return None
    return _run(Direction.REVERSE, context, repository)


__all__ = [
    "AdjustmentContext",
    "AdjustmentResult",
    "Direction",
    "apply_blocks_minted_adjustment",
    "build_adjustment_context",
    "is_adjustment_block",
    "on_block_applied",
    "on_block_orphaned",
    "transform_records",
]
