# src/mintadj/runtime/chain_params.py
from __future__ import annotations

import json
import os
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

from mintadj.ledger.levels import cumulative_from_blocks_needed, validate_cumulative_thresholds

Json = Dict[str, Any]

# Blocks required to move from level N-1 to level N, for N = 1..10.
DEFAULT_BLOCKS_NEEDED_BY_LEVEL: Tuple[int, ...] = (
    7_200,
    64_800,
    129_600,
    172_800,
    244_000,
    345_600,
    518_400,
    691_200,
    864_000,
    1_036_800,
)

# Digest of the address set in the bundled blocks-minted-adjustment.json.
DEFAULT_ADJUSTMENT_DIGEST = "EhPWyQjFkJmtAzzztBRHZyk1JJ538W1ftQEzBWMRgNkN"

DEFAULT_ADJUSTMENT_HEIGHT = 1_589_200


def _as_int(v: Any, default: int) -> int:
    if v is None or isinstance(v, bool):
        return int(default)
    try:
        return int(v)
    except (TypeError, ValueError):
        return int(default)


def _as_str(v: Any, default: str) -> str:
    if v is None:
        return str(default)
    s = str(v)
    return s if s.strip() else str(default)


def _as_bool(v: Any, default: bool) -> bool:
    if v is None:
        return bool(default)
    if isinstance(v, bool):
        return v
    s = str(v).strip().lower()
    if s in {"1", "true", "yes", "y", "on"}:
        return True
    if s in {"0", "false", "no", "n", "off"}:
        return False
    return bool(default)


@dataclass(frozen=True)
class ChainParams:
    chain_id: str

    # Height of the block whose processing applies the adjustment (and whose
    # orphaning reverses it).
    adjustment_height: int

    cumulative_blocks_by_level: Tuple[int, ...]
    expected_adjustment_digest: str

    # Dataset file; empty means the bundled resource.
    adjustment_source: str

    # Escalate a digest mismatch to a hard error instead of skipping.
    strict_digest: bool

    log_level: str

    @property
    def max_level(self) -> int:
        return len(self.cumulative_blocks_by_level) - 1


def validate_chain_params(p: ChainParams) -> None:
    """Fail-fast validation for blockchain parameters."""

    if not isinstance(p.chain_id, str) or not p.chain_id.strip():
        raise ValueError("chain_id must be a non-empty string")

    if int(p.adjustment_height) <= 0:
        raise ValueError(f"adjustment_height must be > 0; got: {p.adjustment_height}")

    validate_cumulative_thresholds(p.cumulative_blocks_by_level)

    if not isinstance(p.expected_adjustment_digest, str) or not p.expected_adjustment_digest.strip():
        raise ValueError("expected_adjustment_digest must be a non-empty base58 string")

    if p.adjustment_source:
        src = Path(p.adjustment_source)
        if not src.is_file():
            raise ValueError(f"adjustment_source does not exist or is not a file: {p.adjustment_source!r}")


def default_chain_params() -> ChainParams:
    return ChainParams(
        chain_id="mintadj-main",
        adjustment_height=DEFAULT_ADJUSTMENT_HEIGHT,
        cumulative_blocks_by_level=cumulative_from_blocks_needed(DEFAULT_BLOCKS_NEEDED_BY_LEVEL),
        expected_adjustment_digest=DEFAULT_ADJUSTMENT_DIGEST,
        adjustment_source="",
        strict_digest=False,
        log_level="INFO",
    )


def _thresholds_from_raw(raw: Json, default: Tuple[int, ...]) -> Tuple[int, ...]:
    cumulative = raw.get("cumulative_blocks_by_level")
    needed = raw.get("blocks_needed_by_level")
    if cumulative is not None and needed is not None:
        raise ValueError("set only one of cumulative_blocks_by_level / blocks_needed_by_level")
    if cumulative is not None:
        if not isinstance(cumulative, list):
            raise ValueError("cumulative_blocks_by_level must be a JSON list")
        return validate_cumulative_thresholds(cumulative)
    if needed is not None:
        if not isinstance(needed, list):
            raise ValueError("blocks_needed_by_level must be a JSON list")
        return cumulative_from_blocks_needed(needed)
    return default


def read_chain_params_file(path: str) -> ChainParams:
    p = Path(path)
    raw = json.loads(p.read_text(encoding="utf-8"))
    if not isinstance(raw, dict):
        raise ValueError("chain params must be a JSON object")

    d = default_chain_params()

    source = _as_str(raw.get("adjustment_source"), d.adjustment_source)
    if source and not Path(source).is_absolute():
        # Relative dataset paths are resolved against the params file.
        source = str((p.parent / source).resolve())

    params = ChainParams(
        chain_id=_as_str(raw.get("chain_id"), d.chain_id),
        adjustment_height=_as_int(raw.get("adjustment_height"), d.adjustment_height),
        cumulative_blocks_by_level=_thresholds_from_raw(raw, d.cumulative_blocks_by_level),
        expected_adjustment_digest=_as_str(raw.get("expected_adjustment_digest"), d.expected_adjustment_digest),
        adjustment_source=source,
        strict_digest=_as_bool(raw.get("strict_digest"), d.strict_digest),
        log_level=_as_str(raw.get("log_level"), d.log_level),
    )

    validate_chain_params(params)
    return params


def apply_env_overrides(params: ChainParams) -> ChainParams:
    """Operator overrides that do not touch consensus values."""
    return replace(
        params,
        strict_digest=_as_bool(os.environ.get("MINTADJ_STRICT_DIGEST"), params.strict_digest),
        log_level=_as_str(os.environ.get("MINTADJ_LOG_LEVEL"), params.log_level),
    )


def load_chain_params(*, config_path: Optional[str] = None) -> ChainParams:
    path = config_path or os.environ.get("MINTADJ_CHAIN_PARAMS_PATH")
    if path:
        params = read_chain_params_file(path)
    else:
        params = default_chain_params()

    params = apply_env_overrides(params)
    validate_chain_params(params)
    return params
