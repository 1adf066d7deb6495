# src/mintadj/ledger/levels.py
from __future__ import annotations

import logging
from typing import Any, Iterable, Sequence, Tuple

from mintadj.ledger.accounts import AccountRepository
from mintadj.runtime.errors import DataError
from mintadj.util.structured_logging import log_event

log = logging.getLogger("mintadj.ledger.levels")


def validate_cumulative_thresholds(thresholds: Iterable[Any]) -> Tuple[int, ...]:
    """Return thresholds as an int tuple or raise ValueError.

    Index 0 must be 0 so every account qualifies for level 0; values must be
    non-negative and non-decreasing.
    """
    out = []
    for i, v in enumerate(thresholds):
        if isinstance(v, bool) or not isinstance(v, int):
            raise ValueError(f"cumulative threshold at level {i} must be an int; got: {v!r}")
        if v < 0:
            raise ValueError(f"cumulative threshold at level {i} must be >= 0; got: {v}")
        if out and v < out[-1]:
            raise ValueError(f"cumulative thresholds must be non-decreasing; level {i} has {v} < {out[-1]}")
        out.append(int(v))

    if not out:
        raise ValueError("cumulative thresholds must not be empty")
    if out[0] != 0:
        raise ValueError(f"cumulative threshold for level 0 must be 0; got: {out[0]}")
    return tuple(out)


def cumulative_from_blocks_needed(blocks_needed_by_level: Iterable[Any]) -> Tuple[int, ...]:
    """Build the cumulative table from per-level block requirements.

    [7200, 64800] -> (0, 7200, 72000)
    """
    out = [0]
    for i, v in enumerate(blocks_needed_by_level):
        if isinstance(v, bool) or not isinstance(v, int) or v < 0:
            raise ValueError(f"blocks needed for level {i + 1} must be a non-negative int; got: {v!r}")
        out.append(out[-1] + int(v))
    return tuple(out)


def level_for_blocks(effective_blocks_minted: int, thresholds: Sequence[int]) -> int:
    # Negative totals can only come from adjustments/penalties.
    if effective_blocks_minted < 0:
        return 0

    for level in range(len(thresholds) - 1, -1, -1):
        if effective_blocks_minted >= thresholds[level]:
            return level
    return 0


def recalc_account_level(repository: AccountRepository, address: str, thresholds: Sequence[int]) -> Tuple[int, bool]:
    """Re-derive and persist the minting level of one account.

    The level is written through repository.set_level() even when it did not
    change. Returns (new_level, changed).
    """
    account = repository.get_account(address)
    if account is None:
        raise DataError("account_missing", "recalc_on_unknown_account", address)

    previous = int(account.level)
    new_level = level_for_blocks(account.effective_blocks_minted, thresholds)

    account.level = new_level
    repository.set_level(account)

    log_event(
        log,
        "minter_level_updated",
        level=logging.DEBUG,
        address=address,
        effective_blocks_minted=account.effective_blocks_minted,
        previous_level=previous,
        new_level=new_level,
    )
    return new_level, new_level != previous


__all__ = [
    "cumulative_from_blocks_needed",
    "level_for_blocks",
    "recalc_account_level",
    "validate_cumulative_thresholds",
]
