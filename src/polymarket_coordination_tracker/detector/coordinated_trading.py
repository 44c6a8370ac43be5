"""Coordinated trading detection across tracked wallets.

This module identifies groups of wallets whose trading is correlated in
time, market, size and direction: copy-trading rings, sybil clusters and
wash-trading counter-parties. Trades are pushed in by an ingestion
collaborator; every public operation is synchronous and does no I/O.
"""

from __future__ import annotations

import logging
import threading
import time
from collections import defaultdict
from collections.abc import Callable, Iterable
from datetime import UTC, datetime

from polymarket_coordination_tracker.config import CoordinationSettings
from polymarket_coordination_tracker.detector.addresses import normalize_wallet, to_checksum_wallet
from polymarket_coordination_tracker.detector.clustering import build_group, cluster_pairs
from polymarket_coordination_tracker.detector.events import (
    AnyEventCallback,
    DetectorEvent,
    EventBus,
    EventCallback,
    Unsubscribe,
)
from polymarket_coordination_tracker.detector.models import (
    AnalysisOptions,
    BatchCoordinationResult,
    CacheStats,
    ConnectedWallet,
    CoordinatedGroup,
    CoordinationAnalysisResult,
    CoordinationPatternType,
    CoordinationRiskLevel,
    CoordinationSummary,
    MostConnectedWallet,
    PairAnalysis,
    Trade,
    empty_pattern_counts,
    empty_risk_counts,
)
from polymarket_coordination_tracker.detector.pair_cache import PairCache
from polymarket_coordination_tracker.detector.similarity import compute_pair_analysis
from polymarket_coordination_tracker.detector.trade_store import TradeStore

logger = logging.getLogger(__name__)

MOST_CONNECTED_LIMIT = 10


def _utcnow() -> datetime:
    return datetime.now(UTC)


class CoordinatedTradingDetector:
    """Detects coordinated trading groups among tracked wallets.

    Each analysis compares a focal wallet against a bounded set of other
    tracked wallets, keeps pairs whose composite similarity clears
    ``min_similarity_score``, merges them into connected groups and
    classifies each group by pattern, risk and confidence.

    Instances are independent. Mutation, cache invalidation and analysis
    share one re-entrant lock, so an analysis always reflects every
    ``add_trades`` call that returned before it and never sees a pair result
    computed from trades that have since changed.

    Args:
        settings: Detector thresholds; defaults are read from the
            environment (``COORDINATION_*``).
        clock: Returns the current UTC time; injectable for tests.

    Example:
        ```python
        detector = CoordinatedTradingDetector()
        detector.add_trades(trades)
        result = detector.analyze("0xabc...")
        if result.is_coordinated:
            print(result.highest_risk_level)
        ```
    """

    def __init__(
        self,
        settings: CoordinationSettings | None = None,
        *,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self._settings = settings or CoordinationSettings()
        self._clock = clock or _utcnow
        self._store = TradeStore()
        self._cache: PairCache[PairAnalysis] = PairCache(
            ttl_seconds=self._settings.cache_ttl_seconds,
            clock=self._clock,
        )
        self._events = EventBus(enabled=self._settings.enable_events)
        # Insertion-ordered: the first group is the oldest.
        self._groups: dict[str, CoordinatedGroup] = {}
        self._lock = threading.RLock()
        self._last_analysis_at: datetime | None = None

    @property
    def settings(self) -> CoordinationSettings:
        return self._settings

    @property
    def events(self) -> EventBus:
        return self._events

    def add_trades(self, trades: Iterable[Trade] | None) -> set[str]:
        """Ingest trades and invalidate cached pairs for every touched wallet.

        Trades with a malformed wallet address are dropped. Re-adding a
        ``trade_id`` for a wallet replaces the stored record.

        Returns:
            The checksummed wallets whose trade sets changed.
        """
        if trades is None:
            return set()
        batch = list(trades)
        if not batch:
            return set()

        with self._lock:
            touched = self._store.add(batch)
            if touched:
                self._cache.invalidate_wallets(touched)
                self._events.publish(
                    DetectorEvent.TRADES_ADDED,
                    {"wallets": sorted(touched), "trade_count": len(batch)},
                )
        return touched

    def get_trades(self, wallet: str) -> list[Trade]:
        """Return a copy of the wallet's trades; [] for unknown or malformed."""
        with self._lock:
            return self._store.get(wallet)

    def get_tracked_wallets(self) -> list[str]:
        with self._lock:
            return self._store.wallets()

    def clear_trades(self, wallet: str) -> bool:
        """Forget a wallet: its trades, cached pairs and any group containing it.

        Returns:
            True if the wallet was tracked.
        """
        with self._lock:
            removed = self._store.remove(wallet)
            if removed is None:
                return False
            self._cache.invalidate_wallet(removed)
            dropped = [gid for gid, g in self._groups.items() if removed in g.member_set]
            for gid in dropped:
                del self._groups[gid]
            self._events.publish(DetectorEvent.TRADES_CLEARED, {"wallet": removed, "groups_removed": len(dropped)})
        logger.debug("Cleared trades for %s (%d groups removed)", removed[:10] + "...", len(dropped))
        return True

    def clear_all_trades(self) -> None:
        with self._lock:
            wallets = self._store.clear()
            self._cache.clear()
            self._groups.clear()
            self._events.publish(DetectorEvent.ALL_TRADES_CLEARED, {"wallet_count": len(wallets)})
        logger.info("Cleared trades for %d wallets", len(wallets))

    def analyze_pair(
        self,
        wallet_a: str,
        wallet_b: str,
        options: AnalysisOptions | None = None,
    ) -> PairAnalysis | None:
        """Compare two wallets.

        Returns None for a malformed address, a self-comparison, or when
        either wallet has too few trades. Results are cached per unordered
        pair and filter set; ``options.bypass_cache`` recomputes and
        refreshes the cached entry.
        """
        a = normalize_wallet(wallet_a)
        b = normalize_wallet(wallet_b)
        if a is None or b is None or a == b:
            return None
        with self._lock:
            return self._analyze_pair(a, b, options or AnalysisOptions())

    def _analyze_pair(self, wallet_a: str, wallet_b: str, options: AnalysisOptions) -> PairAnalysis | None:
        lo, hi = sorted((wallet_a, wallet_b))
        signature = options.filter_signature
        use_cache = self._settings.enable_caching

        result: PairAnalysis | None = None
        if use_cache and not options.bypass_cache:
            result = self._cache.get(lo, hi, signature)
            if result is not None:
                logger.debug("Pair cache hit for %s/%s", lo[:10], hi[:10])

        if result is None:
            result = compute_pair_analysis(
                lo,
                self._store.get(lo),
                hi,
                self._store.get(hi),
                self._settings,
                options,
                now=self._clock(),
            )
            if result is None:
                return None
            if use_cache:
                self._cache.put(lo, hi, result, signature)

        return result if wallet_a == lo else result.swapped()

    def analyze(self, wallet: str, options: AnalysisOptions | None = None) -> CoordinationAnalysisResult:
        """Analyze one wallet for coordinated trading.

        Args:
            wallet: The focal wallet address (any letter case).
            options: Time range, market and wallet filters, cache bypass and
                group retention.

        Returns:
            The analysis result. A wallet with no similar peers yields
            ``is_coordinated=False`` and no groups.

        Raises:
            InvalidWalletAddressError: If ``wallet`` is malformed.
        """
        focal = to_checksum_wallet(wallet)
        opts = options or AnalysisOptions()

        with self._lock:
            # Collect candidates
            candidates = [w for w in self._store.wallets() if w != focal]
            if opts.wallet_filter:
                allowed = {normalize_wallet(w) for w in opts.wallet_filter}
                candidates = [w for w in candidates if w in allowed]
            candidates = candidates[: self._settings.max_pairs_per_wallet]

            # Score pairs
            surviving: list[PairAnalysis] = []
            for other in candidates:
                try:
                    pair = self._analyze_pair(focal, other, opts)
                except Exception as e:
                    logger.warning("Pair analysis failed for %s/%s: %s", focal[:10], other[:10], e)
                    continue
                if pair is not None and pair.similarity_score >= self._settings.min_similarity_score:
                    surviving.append(pair)

            # Cluster
            components = cluster_pairs(surviving, anchor=focal)

            # Classify
            now = self._clock()
            groups: list[CoordinatedGroup] = []
            for members in components:
                member_set = set(members)
                group = build_group(
                    origin_wallet=focal,
                    members=members,
                    pairs=[p for p in surviving if p.wallet_a in member_set and p.wallet_b in member_set],
                    trades_by_wallet={m: self._store.get(m) for m in members},
                    settings=self._settings,
                    now=now,
                )
                if group is not None:
                    groups.append(group)

            self._record_groups(focal, groups, retain_previous=opts.retain_previous_groups)

            highest = max(
                (g.risk_level for g in groups),
                key=lambda level: level.rank,
                default=CoordinationRiskLevel.NONE,
            )
            connected = tuple(
                ConnectedWallet(address=p.other(focal), similarity_score=p.similarity_score, pattern=p.pattern)
                for p in sorted(surviving, key=lambda p: (-p.similarity_score, p.other(focal)))
            )
            result = CoordinationAnalysisResult(
                wallet_address=focal,
                groups=tuple(groups),
                is_coordinated=bool(groups),
                highest_risk_level=highest,
                connected_wallets=connected,
                wallets_compared=len(candidates),
                analyzed_at=now,
            )
            self._last_analysis_at = now

            self._events.publish(DetectorEvent.ANALYSIS_COMPLETE, {"wallet": focal, "result": result})
            for group in groups:
                if group.is_high_risk:
                    self._events.publish(DetectorEvent.HIGH_RISK_GROUP_DETECTED, {"group": group})

        logger.info(
            "Coordination analysis for %s: compared=%d, pairs=%d, groups=%d, risk=%s",
            focal[:10] + "...",
            len(candidates),
            len(surviving),
            len(groups),
            highest.value,
        )
        return result

    def _record_groups(self, origin: str, groups: list[CoordinatedGroup], *, retain_previous: bool) -> None:
        if not retain_previous:
            superseded = [gid for gid, g in self._groups.items() if g.origin_wallet == origin]
            for gid in superseded:
                del self._groups[gid]
        for group in groups:
            # Group ids derive from the member set, so an equal set replaces.
            self._groups.pop(group.group_id, None)
            self._groups[group.group_id] = group
        while len(self._groups) > self._settings.max_groups:
            oldest = next(iter(self._groups))
            del self._groups[oldest]

    def batch_analyze(
        self,
        wallets: Iterable[str],
        options: AnalysisOptions | None = None,
    ) -> BatchCoordinationResult:
        """Analyze each wallet independently.

        A failing wallet (e.g. malformed address) is recorded in
        ``failures`` and does not stop the batch.
        """
        start = time.perf_counter()
        results: dict[str, CoordinationAnalysisResult] = {}
        failures: dict[str, str] = {}
        groups: dict[str, CoordinatedGroup] = {}

        for wallet in wallets:
            try:
                result = self.analyze(wallet, options)
            except Exception as e:
                logger.warning("Coordination analysis failed for %r: %s", wallet, e)
                failures[str(wallet)] = str(e)
                continue
            results[result.wallet_address] = result
            for group in result.groups:
                groups[group.group_id] = group

        groups_by_risk = empty_risk_counts()
        groups_by_pattern = empty_pattern_counts()
        for group in groups.values():
            groups_by_risk[group.risk_level] += 1
            groups_by_pattern[group.pattern] += 1

        batch = BatchCoordinationResult(
            results_by_wallet=results,
            groups=tuple(groups.values()),
            wallets_analyzed=len(results),
            coordinated_wallet_count=sum(1 for r in results.values() if r.is_coordinated),
            groups_by_risk=groups_by_risk,
            groups_by_pattern=groups_by_pattern,
            failures=failures,
            processing_time_ms=(time.perf_counter() - start) * 1000,
            analyzed_at=self._clock(),
        )
        self._events.publish(DetectorEvent.BATCH_ANALYSIS_COMPLETE, {"result": batch})

        logger.info(
            "Batch coordination analysis: wallets=%d, coordinated=%d, groups=%d, failures=%d (%.1fms)",
            batch.wallets_analyzed,
            batch.coordinated_wallet_count,
            len(batch.groups),
            len(failures),
            batch.processing_time_ms,
        )
        return batch

    def is_coordinated(self, wallet: str) -> bool:
        """Return True if the wallet belongs to any retained group."""
        return bool(self.get_groups_for_wallet(wallet))

    def get_groups_for_wallet(self, wallet: str) -> list[CoordinatedGroup]:
        normalized = normalize_wallet(wallet)
        if normalized is None:
            return []
        with self._lock:
            return [g for g in self._groups.values() if normalized in g.member_set]

    def get_detected_groups(self) -> list[CoordinatedGroup]:
        with self._lock:
            return list(self._groups.values())

    def get_high_risk_groups(self) -> list[CoordinatedGroup]:
        with self._lock:
            return [g for g in self._groups.values() if g.is_high_risk]

    def get_groups_by_pattern(self, pattern: CoordinationPatternType) -> list[CoordinatedGroup]:
        with self._lock:
            return [g for g in self._groups.values() if g.pattern == pattern]

    def get_groups_by_risk_level(self, level: CoordinationRiskLevel) -> list[CoordinatedGroup]:
        with self._lock:
            return [g for g in self._groups.values() if g.risk_level == level]

    def clear_cache(self) -> int:
        """Drop every cached pair analysis and notify subscribers."""
        with self._lock:
            removed = self._cache.clear()
            self._events.publish(DetectorEvent.CACHE_CLEARED, {"entries_removed": removed})
        logger.debug("Cleared %d cached pair analyses", removed)
        return removed

    def prune_cache(self) -> int:
        """Drop expired pair analyses; return how many were removed."""
        with self._lock:
            return self._cache.prune()

    def get_cache_stats(self) -> CacheStats:
        with self._lock:
            return self._cache.stats()

    def get_summary(self) -> CoordinationSummary:
        """Process-wide counters for dashboards."""
        with self._lock:
            groups = list(self._groups.values())
            groups_by_risk = empty_risk_counts()
            groups_by_pattern = empty_pattern_counts()
            coordinated: set[str] = set()
            for group in groups:
                groups_by_risk[group.risk_level] += 1
                groups_by_pattern[group.pattern] += 1
                coordinated.update(group.members)

            return CoordinationSummary(
                total_wallets=self._store.wallet_count(),
                total_trades=self._store.trade_count(),
                detected_groups=len(groups),
                groups_by_risk=groups_by_risk,
                groups_by_pattern=groups_by_pattern,
                coordinated_wallet_count=len(coordinated),
                high_risk_groups=tuple(g for g in groups if g.is_high_risk),
                most_connected_wallets=self._most_connected(groups),
                cache_stats=self._cache.stats(),
                last_analysis_at=self._last_analysis_at,
            )

    @staticmethod
    def _most_connected(groups: list[CoordinatedGroup]) -> tuple[MostConnectedWallet, ...]:
        pair_scores: dict[tuple[str, str], float] = {}
        group_counts: dict[str, int] = defaultdict(int)
        for group in groups:
            for member in group.members:
                group_counts[member] += 1
            for pair in group.pair_analyses:
                key = (min(pair.wallets), max(pair.wallets))
                pair_scores[key] = pair.similarity_score

        partners: dict[str, dict[str, float]] = defaultdict(dict)
        for (a, b), score in pair_scores.items():
            partners[a][b] = score
            partners[b][a] = score

        ranked = sorted(
            partners.items(),
            key=lambda item: (-len(item[1]), -group_counts[item[0]], item[0]),
        )
        return tuple(
            MostConnectedWallet(
                address=wallet,
                connection_count=len(scores),
                group_count=group_counts[wallet],
                avg_similarity=round(sum(scores.values()) / len(scores), 2),
            )
            for wallet, scores in ranked[:MOST_CONNECTED_LIMIT]
        )

    def subscribe(self, event: DetectorEvent, callback: EventCallback) -> Unsubscribe:
        return self._events.subscribe(event, callback)

    def subscribe_all(self, callback: AnyEventCallback) -> Unsubscribe:
        return self._events.subscribe_all(callback)


_shared_detector: CoordinatedTradingDetector | None = None
_shared_lock = threading.Lock()


def init_shared_detector(settings: CoordinationSettings | None = None) -> CoordinatedTradingDetector:
    """Create (or replace) the process-wide detector."""
    global _shared_detector
    with _shared_lock:
        _shared_detector = CoordinatedTradingDetector(settings)
        return _shared_detector


def get_shared_detector() -> CoordinatedTradingDetector:
    """Return the process-wide detector, creating it with defaults if needed."""
    global _shared_detector
    with _shared_lock:
        if _shared_detector is None:
            _shared_detector = CoordinatedTradingDetector()
        return _shared_detector


def reset_shared_detector() -> None:
    global _shared_detector
    with _shared_lock:
        _shared_detector = None


def add_trades_for_coordination(trades: Iterable[Trade] | None) -> set[str]:
    return get_shared_detector().add_trades(trades)


def analyze_wallet_coordination(
    wallet: str,
    options: AnalysisOptions | None = None,
) -> CoordinationAnalysisResult:
    return get_shared_detector().analyze(wallet, options)


def batch_analyze_coordination(
    wallets: Iterable[str],
    options: AnalysisOptions | None = None,
) -> BatchCoordinationResult:
    return get_shared_detector().batch_analyze(wallets, options)


def is_wallet_coordinated(wallet: str) -> bool:
    return get_shared_detector().is_coordinated(wallet)


def get_coordination_summary() -> CoordinationSummary:
    return get_shared_detector().get_summary()
