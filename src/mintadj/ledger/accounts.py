# src/mintadj/ledger/accounts.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional, Protocol

from mintadj.ledger.adjustments import AdjustmentRecord
from mintadj.runtime.errors import DataError

Json = Dict[str, Any]


@dataclass(slots=True)
class AccountState:
    """Minting counters for a single account.

    Owned by the repository. The adjustment core only mutates
    `blocks_minted_adjustment` (through the repository) and `level`.
    """

    address: str
    blocks_minted: int = 0
    blocks_minted_adjustment: int = 0
    blocks_minted_penalty: int = 0
    level: int = 0

    @property
    def effective_blocks_minted(self) -> int:
        return int(self.blocks_minted) + int(self.blocks_minted_adjustment) + int(self.blocks_minted_penalty)

    def to_json(self) -> Json:
        return {
            "address": self.address,
            "blocks_minted": int(self.blocks_minted),
            "blocks_minted_adjustment": int(self.blocks_minted_adjustment),
            "blocks_minted_penalty": int(self.blocks_minted_penalty),
            "level": int(self.level),
        }


class AccountRepository(Protocol):
    """Persistence collaborator consumed by the adjustment core.

    Implementations raise DataError on I/O or consistency failures.
    """

    def get_account(self, address: str) -> Optional[AccountState]: ...

    def update_blocks_minted_adjustments(self, records: Iterable[AdjustmentRecord]) -> None: ...

    def set_level(self, account: AccountState) -> None: ...


_COUNTER_FIELDS = (
    "blocks_minted",
    "blocks_minted_adjustment",
    "blocks_minted_penalty",
    "level",
)


def _as_int(v: Any, default: int = 0) -> int:
    if isinstance(v, bool):
        return default
    try:
        return int(v)
    except (TypeError, ValueError):
        return default


def normalize_account(acct: Json) -> Json:
    """Coerce the minting counters of a ledger-state account dict in place.

    Missing counters are created at 0 so adjustments can always be added.
    """
    for key in _COUNTER_FIELDS:
        acct[key] = _as_int(acct.get(key), 0)
    return acct


class LedgerStateAccountRepository:
    """AccountRepository over a JSON ledger-state dict.

    Accounts live at state["accounts"][address]. The caller owns the state
    snapshot and decides when (and whether) to persist it.
    """

    def __init__(self, state: Json) -> None:
        accounts = state.get("accounts")
        if accounts is None:
            accounts = {}
            state["accounts"] = accounts
        elif not isinstance(accounts, dict):
            raise DataError("bad_state", "accounts_not_dict", type(accounts).__name__)
        self._state = state
        self._accounts: Json = accounts

    def _raw(self, address: str) -> Optional[Json]:
        acct = self._accounts.get(address)
        if acct is None:
            return None
        if not isinstance(acct, dict):
            raise DataError("bad_state", "account_not_dict", address)
        return acct

    def get_account(self, address: str) -> Optional[AccountState]:
        acct = self._raw(address)
        if acct is None:
            return None
        normalize_account(acct)
        return AccountState(
            address=address,
            blocks_minted=acct["blocks_minted"],
            blocks_minted_adjustment=acct["blocks_minted_adjustment"],
            blocks_minted_penalty=acct["blocks_minted_penalty"],
            level=acct["level"],
        )

    def update_blocks_minted_adjustments(self, records: Iterable[AdjustmentRecord]) -> None:
        for rec in records:
            acct = self._raw(rec.address)
            if acct is None:
                acct = {}
                self._accounts[rec.address] = acct
            normalize_account(acct)
            acct["blocks_minted_adjustment"] = acct["blocks_minted_adjustment"] + int(rec.delta)

    def set_level(self, account: AccountState) -> None:
        acct = self._raw(account.address)
        if acct is None:
            raise DataError("account_missing", "set_level_on_unknown_account", account.address)
        normalize_account(acct)
        acct["level"] = int(account.level)
