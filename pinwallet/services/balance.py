"""Stablecoin balance lookup for the primary wallet."""

from __future__ import annotations

from typing import Iterable, Optional

from ..providers.custody import TokenBalance

USDC_MARKER = "USDC"
DEFAULT_BALANCE = "0"


def find_usdc_entry(balances: Iterable[TokenBalance]) -> Optional[TokenBalance]:
    """First balance whose symbol starts with USDC or whose name contains it (case-sensitive)."""
    for entry in balances:
        if entry.symbol.startswith(USDC_MARKER) or USDC_MARKER in entry.name:
            return entry
    return None


def find_usdc_balance(balances: Iterable[TokenBalance]) -> str:
    entry = find_usdc_entry(balances)
    return entry.amount if entry is not None else DEFAULT_BALANCE
