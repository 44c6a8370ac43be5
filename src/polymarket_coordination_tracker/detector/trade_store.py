"""Per-wallet trade storage with upsert-by-id semantics."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Iterator

from polymarket_coordination_tracker.detector.addresses import normalize_wallet
from polymarket_coordination_tracker.detector.models import Trade

logger = logging.getLogger(__name__)


class TradeStore:
    """In-memory trade collections keyed by checksummed wallet address.

    Wallets keep their first-seen order and each wallet's trades keep their
    first-seen order; re-adding a ``trade_id`` replaces the stored record in
    place. Records with a malformed wallet address are skipped. The store
    has no eviction of its own: callers remove retired wallets explicitly.
    """

    def __init__(self) -> None:
        self._trades: dict[str, dict[str, Trade]] = {}

    def add(self, trades: Iterable[Trade] | None) -> set[str]:
        """Upsert trades and return the set of wallets that changed."""
        touched: set[str] = set()
        if not trades:
            return touched

        skipped = 0
        for trade in trades:
            wallet = normalize_wallet(trade.wallet_address)
            if wallet is None:
                skipped += 1
                continue
            if trade.wallet_address != wallet:
                trade = trade.with_wallet(wallet)
            self._trades.setdefault(wallet, {})[trade.trade_id] = trade
            touched.add(wallet)

        if skipped:
            logger.debug("Skipped %d trades with malformed wallet addresses", skipped)
        return touched

    def get(self, wallet: str) -> list[Trade]:
        """Return a copy of the wallet's trades, [] for unknown or malformed."""
        normalized = normalize_wallet(wallet)
        if normalized is None:
            return []
        return list(self._trades.get(normalized, {}).values())

    def remove(self, wallet: str) -> str | None:
        """Drop all trades for a wallet; return its canonical form if it was tracked."""
        normalized = normalize_wallet(wallet)
        if normalized is None or normalized not in self._trades:
            return None
        del self._trades[normalized]
        return normalized

    def clear(self) -> list[str]:
        """Drop every wallet and return the wallets that were tracked."""
        wallets = list(self._trades)
        self._trades.clear()
        return wallets

    def wallets(self) -> list[str]:
        """Tracked wallets in first-seen order."""
        return list(self._trades)

    def wallet_count(self) -> int:
        return len(self._trades)

    def trade_count(self) -> int:
        return sum(len(trades) for trades in self._trades.values())

    def __contains__(self, wallet: object) -> bool:
        normalized = normalize_wallet(wallet)
        return normalized is not None and normalized in self._trades

    def __iter__(self) -> Iterator[str]:
        return iter(self.wallets())

    def __len__(self) -> int:
        return len(self._trades)
