from __future__ import annotations

import json
from pathlib import Path

import pytest

from mintadj.crypto.digest import compute_digest
from mintadj.ledger.adjustments import (
    AdjustmentRecord,
    bundled_adjustment_path,
    dedupe_by_address,
    load_adjustment_dataset,
    parse_adjustment_dataset,
)
from mintadj.runtime.chain_params import DEFAULT_ADJUSTMENT_DIGEST
from mintadj.runtime.errors import DatasetError


def _write(tmp_path: Path, obj: object) -> Path:
    p = tmp_path / "adjustments.json"
    p.write_text(json.dumps(obj), encoding="utf-8")
    return p


def test_bundled_dataset_loads_and_matches_default_digest() -> None:
    ds = load_adjustment_dataset()
    assert len(ds) == 12
    assert ds.source == str(bundled_adjustment_path())
    assert ds.digest() == DEFAULT_ADJUSTMENT_DIGEST
    assert all(isinstance(r.delta, int) for r in ds)


def test_load_preserves_order_and_values(tmp_path: Path) -> None:
    p = _write(
        tmp_path,
        [
            {"address": "Qbob", "blocksMintedAdjustment": -20},
            {"address": "Qalice", "blocksMintedAdjustment": 35},
        ],
    )
    ds = load_adjustment_dataset(p)
    assert ds.records == (AdjustmentRecord("Qbob", -20), AdjustmentRecord("Qalice", 35))
    assert ds.addresses == ["Qbob", "Qalice"]


def test_dataset_is_immutable(tmp_path: Path) -> None:
    ds = load_adjustment_dataset(_write(tmp_path, [{"address": "Qa", "blocksMintedAdjustment": 1}]))
    with pytest.raises(AttributeError):
        ds.records = ()  # type: ignore[misc]
    with pytest.raises(AttributeError):
        ds.records[0].delta = 5  # type: ignore[misc]


@pytest.mark.parametrize("address", [" Qa", "Qa ", "\tQa", "Qa\n"])
def test_whitespace_padded_addresses_are_rejected(address: str) -> None:
    raw = json.dumps([{"address": address, "blocksMintedAdjustment": 1}, {"address": "Qb", "blocksMintedAdjustment": 2}])
    with pytest.raises(DatasetError) as e:
        parse_adjustment_dataset(raw)
    assert e.value.code == "dataset_invalid"
    assert e.value.reason == "address_whitespace"


def test_addresses_are_hashed_verbatim() -> None:
    ds = parse_adjustment_dataset(
        json.dumps(
            [
                {"address": "Qb", "blocksMintedAdjustment": 2},
                {"address": "Qa-x", "blocksMintedAdjustment": 1},
            ]
        )
    )
    assert ds.addresses == ["Qb", "Qa-x"]
    assert ds.digest() == compute_digest(["Qa-x", "Qb"])


def test_duplicate_addresses_are_rejected() -> None:
    raw = json.dumps(
        [
            {"address": "Qa", "blocksMintedAdjustment": 1},
            {"address": "Qa", "blocksMintedAdjustment": 2},
        ]
    )
    with pytest.raises(DatasetError) as e:
        parse_adjustment_dataset(raw)
    assert e.value.reason == "duplicate_address"


@pytest.mark.parametrize(
    "raw,reason",
    [
        ("not json", "json_decode_failed"),
        (json.dumps({"adjustments": []}), "expected_json_list"),
        (json.dumps([{"address": "Qa"}]), "schema_validation_failed"),
        (json.dumps([{"address": "Qa", "blocksMintedAdjustment": "5"}]), "schema_validation_failed"),
        (json.dumps([{"address": "Qa", "blocksMintedAdjustment": 1.5}]), "schema_validation_failed"),
        (json.dumps([{"address": "Qa", "blocksMintedAdjustment": 1, "extra": True}]), "schema_validation_failed"),
        (json.dumps([{"address": "", "blocksMintedAdjustment": 1}]), "schema_validation_failed"),
        (json.dumps([{"address": "   ", "blocksMintedAdjustment": 1}]), "blank_address"),
        (json.dumps(["Qa"]), "schema_validation_failed"),
    ],
)
def test_malformed_datasets_are_fatal(raw: str, reason: str) -> None:
    with pytest.raises(DatasetError) as e:
        parse_adjustment_dataset(raw)
    assert e.value.code == "dataset_invalid"
    assert e.value.reason == reason


def test_missing_file_is_fatal(tmp_path: Path) -> None:
    with pytest.raises(DatasetError) as e:
        load_adjustment_dataset(tmp_path / "missing.json")
    assert e.value.code == "dataset_unreadable"


def test_empty_dataset_has_no_digest() -> None:
    ds = parse_adjustment_dataset("[]")
    assert len(ds) == 0
    assert ds.digest() is None


def test_dedupe_by_address_last_seen_wins() -> None:
    out = dedupe_by_address([AdjustmentRecord("Qa", 1), AdjustmentRecord("Qb", 2), AdjustmentRecord("Qa", 3)])
    assert list(out) == ["Qa", "Qb"]
    assert out["Qa"].delta == 3
