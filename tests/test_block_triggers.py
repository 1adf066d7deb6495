from __future__ import annotations

import copy
import json
from dataclasses import replace
from pathlib import Path
from typing import Any, Dict

import pytest

from mintadj.ledger.accounts import LedgerStateAccountRepository
from mintadj.ledger.adjustments import AdjustmentRecord, load_adjustment_dataset, parse_adjustment_dataset
from mintadj.runtime.blocks_minted_adjustment import (
    Direction,
    build_adjustment_context,
    is_adjustment_block,
    on_block_applied,
    on_block_orphaned,
)
from mintadj.runtime.chain_params import default_chain_params
from mintadj.runtime.errors import AdjustmentError, DatasetError

HEIGHT = 1_000


def _params(**kw: Any):
    base = replace(default_chain_params(), adjustment_height=HEIGHT, cumulative_blocks_by_level=(0, 100, 300, 700))
    return replace(base, **kw)


def _state(ds) -> Dict[str, Any]:
    return {
        "accounts": {
            r.address: {"blocks_minted": 400, "blocks_minted_adjustment": 0, "blocks_minted_penalty": 0, "level": 2}
            for r in ds
        }
    }


def test_bundled_context_round_trip_at_adjustment_height() -> None:
    ctx = build_adjustment_context(_params())
    st = _state(ctx.dataset)
    before = copy.deepcopy(st)
    repo = LedgerStateAccountRepository(st)

    res = on_block_applied({"height": HEIGHT}, context=ctx, repository=repo)
    assert res is not None
    assert res.ok is True
    assert res.direction is Direction.FORWARD
    assert res.processed_count == len(ctx.dataset)
    assert st != before

    res2 = on_block_orphaned({"height": HEIGHT}, context=ctx, repository=repo)
    assert res2 is not None and res2.ok is True
    assert res2.direction is Direction.REVERSE
    assert st == before


@pytest.mark.parametrize("block", [{"height": HEIGHT - 1}, {"height": HEIGHT + 1}, {}, {"height": "junk"}])
def test_other_blocks_are_ignored(block: Dict[str, Any]) -> None:
    ctx = build_adjustment_context(_params())
    st = _state(ctx.dataset)
    before = copy.deepcopy(st)
    repo = LedgerStateAccountRepository(st)

    assert on_block_applied(block, context=ctx, repository=repo) is None
    assert on_block_orphaned(block, context=ctx, repository=repo) is None
    assert st == before


def test_is_adjustment_block() -> None:
    p = _params()
    assert is_adjustment_block({"height": HEIGHT}, p) is True
    assert is_adjustment_block({"height": str(HEIGHT)}, p) is True
    assert is_adjustment_block({"height": 1}, p) is False


def test_substituted_dataset_with_wrong_digest_is_skipped() -> None:
    ds = parse_adjustment_dataset(json.dumps([{"address": "Qother", "blocksMintedAdjustment": 50}]))
    ctx = build_adjustment_context(_params(), dataset=ds)
    st = {"accounts": {"Qother": {"blocks_minted": 10, "level": 0}}}
    before = copy.deepcopy(st)

    res = on_block_applied({"height": HEIGHT}, context=ctx, repository=LedgerStateAccountRepository(st))
    assert res is not None
    assert res.ok is False
    assert res.error == "digest_mismatch"
    assert st == before


def test_substituted_dataset_with_matching_digest_runs() -> None:
    ds = parse_adjustment_dataset(json.dumps([{"address": "Qother", "blocksMintedAdjustment": 50}]))
    ctx = build_adjustment_context(_params(expected_adjustment_digest=ds.digest()), dataset=ds)
    st: Dict[str, Any] = {"accounts": {}}

    res = on_block_orphaned({"height": HEIGHT}, context=ctx, repository=LedgerStateAccountRepository(st))
    assert res is not None and res.ok is True
    assert st["accounts"]["Qother"]["blocks_minted_adjustment"] == 50


def test_strict_params_raise_on_mismatch() -> None:
    ds = parse_adjustment_dataset(json.dumps([{"address": "Qother", "blocksMintedAdjustment": 50}]))
    ctx = build_adjustment_context(_params(strict_digest=True), dataset=ds)
    with pytest.raises(AdjustmentError):
        on_block_applied({"height": HEIGHT}, context=ctx, repository=LedgerStateAccountRepository({"accounts": {}}))


def test_context_loads_dataset_from_params_source(tmp_path: Path) -> None:
    src = tmp_path / "adj.json"
    src.write_text(json.dumps([{"address": "Qx", "blocksMintedAdjustment": -3}]), encoding="utf-8")
    ctx = build_adjustment_context(_params(adjustment_source=str(src)))
    assert ctx.dataset.records == (AdjustmentRecord("Qx", -3),)


def test_context_refuses_unreadable_dataset(tmp_path: Path) -> None:
    src = tmp_path / "adj.json"
    src.write_text("{broken", encoding="utf-8")
    with pytest.raises(DatasetError):
        build_adjustment_context(_params(adjustment_source=str(src)))


def test_bundled_dataset_matches_default_params() -> None:
    assert load_adjustment_dataset().digest() == default_chain_params().expected_adjustment_digest
