# src/mintadj/__main__.py
from __future__ import annotations

"""Operator tooling for the blocks-minted adjustment.

    python -m mintadj digest [PATH]        print the address-set digest of a dataset
    python -m mintadj check [--config P]   compare dataset digest with chain params
"""

import argparse
import sys
from typing import List, Optional

from mintadj.env import load_dotenv_if_present
from mintadj.runtime.errors import DatasetError


def _cmd_digest(args: argparse.Namespace) -> int:
    from mintadj.ledger.adjustments import load_adjustment_dataset

    dataset = load_adjustment_dataset(args.path or None)
    print(dataset.digest() or "")
    return 0


def _cmd_check(args: argparse.Namespace) -> int:
    from mintadj.runtime.blocks_minted_adjustment import build_adjustment_context
    from mintadj.runtime.chain_params import load_chain_params

    params = load_chain_params(config_path=args.config)
    ctx = build_adjustment_context(params)

    expected = params.expected_adjustment_digest
    actual = ctx.dataset.digest() or ""
    print(f"records:  {len(ctx.dataset)}")
    print(f"expected: {expected}")
    print(f"computed: {actual}")

    if actual != expected:
        print("digest mismatch: this dataset would be skipped at the adjustment block")
        return 1
    print("digest ok")
    return 0


def build_parser() -> argparse.ArgumentParser:
    ap = argparse.ArgumentParser(prog="mintadj", description="Blocks-minted adjustment tooling")
    sub = ap.add_subparsers(dest="cmd", required=True)

    p_digest = sub.add_parser("digest", help="Print the address-set digest of a dataset file")
    p_digest.add_argument("path", nargs="?", default="", help="Dataset JSON (default: bundled)")
    p_digest.set_defaults(func=_cmd_digest)

    p_check = sub.add_parser("check", help="Verify the dataset against the chain params digest")
    p_check.add_argument("--config", default=None, help="Chain params JSON (default: MINTADJ_CHAIN_PARAMS_PATH)")
    p_check.set_defaults(func=_cmd_check)

    return ap


def main(argv: Optional[List[str]] = None) -> int:
    # Load .env early so MINTADJ_* vars exist before anything reads them.
    load_dotenv_if_present()

    from mintadj.util.structured_logging import configure_logging

    configure_logging()

    args = build_parser().parse_args(argv)
    try:
        return int(args.func(args))
    except DatasetError as e:
        print(f"dataset error: {e}", file=sys.stderr)
        return 2
    except (OSError, ValueError) as e:
        print(f"config error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
