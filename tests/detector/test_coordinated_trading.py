"""Tests for the CoordinatedTradingDetector."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from datetime import UTC, datetime, timedelta
from decimal import Decimal
from unittest.mock import Mock

import pytest
from web3 import Web3

from polymarket_coordination_tracker.config import CoordinationSettings
from polymarket_coordination_tracker.detector import coordinated_trading
from polymarket_coordination_tracker.detector.addresses import InvalidWalletAddressError
from polymarket_coordination_tracker.detector.coordinated_trading import (
    CoordinatedTradingDetector,
    add_trades_for_coordination,
    analyze_wallet_coordination,
    batch_analyze_coordination,
    get_coordination_summary,
    get_shared_detector,
    init_shared_detector,
    is_wallet_coordinated,
    reset_shared_detector,
)
from polymarket_coordination_tracker.detector.events import DetectorEvent
from polymarket_coordination_tracker.detector.models import (
    AnalysisOptions,
    CoordinationFlag,
    CoordinationPatternType,
    CoordinationRiskLevel,
    Trade,
)


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


def _trade(
    wallet: str,
    trade_id: str,
    *,
    ts: datetime,
    market: str = "m1",
    side: str = "BUY",
    size: str = "1000",
) -> Trade:
    return Trade(
        trade_id=trade_id,
        wallet_address=wallet,
        market_id=market,
        side=side,  # type: ignore[arg-type]
        size_usd=Decimal(size),
        price=Decimal("0.5"),
        timestamp=ts,
    )


def _series(
    wallet: str,
    *,
    start: datetime,
    count: int = 10,
    offset: timedelta = timedelta(0),
    market: str = "m1",
    side: str = "BUY",
    size: str = "1000",
    prefix: str = "t",
) -> list[Trade]:
    """``count`` trades one minute apart (a 10-minute span by default)."""
    return [
        _trade(
            wallet,
            f"{prefix}-{market}-{i}",
            ts=start + offset + timedelta(minutes=i),
            market=market,
            side=side,
            size=size,
        )
        for i in range(count)
    ]


def _wallet(i: int) -> str:
    return f"0x{i:040x}"


def _cs(wallet: str) -> str:
    return Web3.to_checksum_address(wallet)


@pytest.fixture
def detector() -> CoordinatedTradingDetector:
    return CoordinatedTradingDetector(CoordinationSettings())


@pytest.fixture
def coordinated_pair(
    detector: CoordinatedTradingDetector, wallet_a: str, wallet_b: str, base_time: datetime
) -> CoordinatedTradingDetector:
    """A and B buy the same market within 100ms of each other, ten times."""
    detector.add_trades(_series(wallet_a, start=base_time))
    detector.add_trades(_series(wallet_b, start=base_time, offset=timedelta(milliseconds=100)))
    return detector


class TestTradeIngestion:
    def test_idempotent_ingestion(self, detector: CoordinatedTradingDetector, wallet_a: str, base_time: datetime) -> None:
        detector.add_trades([_trade(wallet_a, "t1", ts=base_time, size="100")])
        detector.add_trades([_trade(wallet_a, "t1", ts=base_time, size="250")])

        trades = detector.get_trades(wallet_a)
        assert len(trades) == 1
        assert trades[0].size_usd == Decimal("250")

    def test_malformed_addresses_dropped(self, detector: CoordinatedTradingDetector, base_time: datetime) -> None:
        assert detector.add_trades([_trade("0xbad", "t1", ts=base_time)]) == set()
        assert detector.get_tracked_wallets() == []

    def test_none_is_noop(self, detector: CoordinatedTradingDetector) -> None:
        assert detector.add_trades(None) == set()
        assert detector.add_trades([]) == set()

    def test_get_trades_is_lenient(self, detector: CoordinatedTradingDetector) -> None:
        assert detector.get_trades("not-a-wallet") == []

    def test_tracked_wallets_are_checksummed(
        self, detector: CoordinatedTradingDetector, wallet_a: str, wallet_b: str, base_time: datetime
    ) -> None:
        shouted = wallet_a.upper().replace("0X", "0x")
        detector.add_trades([_trade(wallet_b, "t1", ts=base_time), _trade(shouted, "t1", ts=base_time)])
        assert detector.get_tracked_wallets() == [_cs(wallet_b), _cs(wallet_a)]

    def test_trades_added_event(self, detector: CoordinatedTradingDetector, wallet_a: str, base_time: datetime) -> None:
        callback = Mock()
        detector.subscribe(DetectorEvent.TRADES_ADDED, callback)
        detector.add_trades([_trade(wallet_a, "t1", ts=base_time)])
        callback.assert_called_once_with({"wallets": [_cs(wallet_a)], "trade_count": 1})

    def test_clear_trades_removes_wallet_and_its_groups(
        self, coordinated_pair: CoordinatedTradingDetector, wallet_a: str, wallet_b: str
    ) -> None:
        coordinated_pair.analyze(wallet_a)
        assert coordinated_pair.get_detected_groups()

        assert coordinated_pair.clear_trades(wallet_b) is True
        assert coordinated_pair.get_trades(wallet_b) == []
        assert coordinated_pair.get_detected_groups() == []
        assert coordinated_pair.analyze_pair(wallet_a, wallet_b) is None

    def test_clear_trades_unknown_wallet(self, detector: CoordinatedTradingDetector, wallet_a: str) -> None:
        assert detector.clear_trades(wallet_a) is False
        assert detector.clear_trades("garbage") is False

    def test_clear_all_trades(self, coordinated_pair: CoordinatedTradingDetector, wallet_a: str) -> None:
        coordinated_pair.analyze(wallet_a)
        callback = Mock()
        coordinated_pair.subscribe(DetectorEvent.ALL_TRADES_CLEARED, callback)

        coordinated_pair.clear_all_trades()

        assert coordinated_pair.get_tracked_wallets() == []
        assert coordinated_pair.get_detected_groups() == []
        assert coordinated_pair.get_cache_stats().size == 0
        callback.assert_called_once_with({"wallet_count": 2})


class TestAnalyzePair:
    def test_self_comparison_is_none(self, coordinated_pair: CoordinatedTradingDetector, wallet_a: str) -> None:
        assert coordinated_pair.analyze_pair(wallet_a, wallet_a) is None
        assert coordinated_pair.analyze_pair(wallet_a, _cs(wallet_a)) is None

    def test_malformed_is_none(self, coordinated_pair: CoordinatedTradingDetector, wallet_a: str) -> None:
        assert coordinated_pair.analyze_pair(wallet_a, "0xnope") is None

    def test_insufficient_trades_is_none(
        self, detector: CoordinatedTradingDetector, wallet_a: str, wallet_b: str, base_time: datetime
    ) -> None:
        detector.add_trades(_series(wallet_a, start=base_time))
        detector.add_trades(_series(wallet_b, start=base_time, count=4))
        assert detector.analyze_pair(wallet_a, wallet_b) is None

    def test_symmetry(self, coordinated_pair: CoordinatedTradingDetector, wallet_a: str, wallet_b: str) -> None:
        forward = coordinated_pair.analyze_pair(wallet_a, wallet_b)
        backward = coordinated_pair.analyze_pair(wallet_b, wallet_a)

        assert forward is not None and backward is not None
        assert (forward.wallet_a, forward.wallet_b) == (_cs(wallet_a), _cs(wallet_b))
        assert (backward.wallet_a, backward.wallet_b) == (_cs(wallet_b), _cs(wallet_a))
        assert forward.similarity_score == backward.similarity_score
        assert forward.swapped() == backward

    def test_repeat_call_is_cached(self, coordinated_pair: CoordinatedTradingDetector, wallet_a: str, wallet_b: str) -> None:
        lo, hi = sorted((_cs(wallet_a), _cs(wallet_b)))
        first = coordinated_pair.analyze_pair(lo, hi)
        second = coordinated_pair.analyze_pair(lo, hi)
        assert first is second
        assert coordinated_pair.get_cache_stats().hits == 1

    def test_add_trades_invalidates_cached_pair(
        self, coordinated_pair: CoordinatedTradingDetector, wallet_a: str, wallet_b: str, base_time: datetime
    ) -> None:
        before = coordinated_pair.analyze_pair(wallet_a, wallet_b)
        coordinated_pair.add_trades(_series(wallet_b, start=base_time + timedelta(hours=5), market="m2"))
        after = coordinated_pair.analyze_pair(wallet_a, wallet_b)

        assert before is not None and after is not None
        assert after.total_trades_analyzed == 30
        assert after.similarity_score < before.similarity_score

    def test_reupsert_still_invalidates(
        self, coordinated_pair: CoordinatedTradingDetector, wallet_a: str, wallet_b: str, base_time: datetime
    ) -> None:
        lo, hi = sorted((_cs(wallet_a), _cs(wallet_b)))
        before = coordinated_pair.analyze_pair(lo, hi)
        coordinated_pair.add_trades(_series(wallet_a, start=base_time)[:1])
        after = coordinated_pair.analyze_pair(lo, hi)
        assert after == before
        assert after is not before

    def test_bypass_cache_refreshes_entry(
        self, coordinated_pair: CoordinatedTradingDetector, wallet_a: str, wallet_b: str
    ) -> None:
        lo, hi = sorted((_cs(wallet_a), _cs(wallet_b)))
        cached = coordinated_pair.analyze_pair(lo, hi)
        fresh = coordinated_pair.analyze_pair(lo, hi, AnalysisOptions(bypass_cache=True))
        again = coordinated_pair.analyze_pair(lo, hi)

        assert fresh == cached
        assert fresh is not cached
        assert again is fresh

    def test_filters_are_cached_separately(
        self, coordinated_pair: CoordinatedTradingDetector, wallet_a: str, wallet_b: str, base_time: datetime
    ) -> None:
        coordinated_pair.analyze_pair(wallet_a, wallet_b)
        filtered = coordinated_pair.analyze_pair(
            wallet_a, wallet_b, AnalysisOptions(end_time=base_time + timedelta(minutes=5))
        )
        assert filtered is not None
        assert filtered.total_trades_analyzed == 11
        assert coordinated_pair.get_cache_stats().size == 2

    def test_caching_disabled(self, wallet_a: str, wallet_b: str, base_time: datetime) -> None:
        detector = CoordinatedTradingDetector(CoordinationSettings(enable_caching=False))
        detector.add_trades(_series(wallet_a, start=base_time) + _series(wallet_b, start=base_time))
        first = detector.analyze_pair(wallet_a, wallet_b)
        second = detector.analyze_pair(wallet_a, wallet_b)
        assert first == second
        assert first is not second
        assert detector.get_cache_stats().size == 0

    def test_cache_expires_after_ttl(self, wallet_a: str, wallet_b: str, base_time: datetime) -> None:
        clock = FakeClock(datetime(2024, 6, 2, tzinfo=UTC))
        detector = CoordinatedTradingDetector(CoordinationSettings(cache_ttl_seconds=10), clock=clock)
        detector.add_trades(_series(wallet_a, start=base_time) + _series(wallet_b, start=base_time))
        first = detector.analyze_pair(wallet_a, wallet_b)
        clock.advance(11)

        assert detector.prune_cache() == 1
        assert detector.analyze_pair(wallet_a, wallet_b) is not first


class TestAnalyze:
    def test_malformed_wallet_raises(self, detector: CoordinatedTradingDetector) -> None:
        with pytest.raises(InvalidWalletAddressError):
            detector.analyze("0x1234")

    def test_lone_wallet_is_not_coordinated(
        self, detector: CoordinatedTradingDetector, wallet_a: str, base_time: datetime
    ) -> None:
        detector.add_trades(_series(wallet_a, start=base_time))
        result = detector.analyze(wallet_a)

        assert result.is_coordinated is False
        assert result.groups == ()
        assert result.highest_risk_level is CoordinationRiskLevel.NONE
        assert result.wallets_compared == 0

    def test_untracked_wallet_is_not_coordinated(self, detector: CoordinatedTradingDetector, wallet_c: str) -> None:
        result = detector.analyze(wallet_c)
        assert result.is_coordinated is False
        assert result.wallet_address == _cs(wallet_c)

    def test_simultaneous_buyers_form_group(
        self, coordinated_pair: CoordinatedTradingDetector, wallet_a: str, wallet_b: str
    ) -> None:
        result = coordinated_pair.analyze(wallet_a)

        assert result.is_coordinated is True
        assert result.group_count == 1
        group = result.groups[0]
        assert set(group.members) == {_cs(wallet_a), _cs(wallet_b)}
        assert group.members[0] == _cs(wallet_a)
        assert group.pattern in (CoordinationPatternType.SIMULTANEOUS, CoordinationPatternType.MIRROR_TRADING)
        assert group.risk_level is CoordinationRiskLevel.CRITICAL
        assert result.highest_risk_level is CoordinationRiskLevel.CRITICAL
        assert [c.address for c in result.connected_wallets] == [_cs(wallet_b)]
        assert result.wallets_compared == 1

    def test_opposite_sides_form_counter_party_group(
        self, detector: CoordinatedTradingDetector, wallet_a: str, wallet_b: str, base_time: datetime
    ) -> None:
        detector.add_trades(_series(wallet_a, start=base_time, side="BUY"))
        detector.add_trades(_series(wallet_b, start=base_time, side="SELL"))

        pair = detector.analyze_pair(wallet_a, wallet_b)
        assert pair is not None
        assert CoordinationFlag.OPPOSITE_DIRECTIONS in pair.flags

        result = detector.analyze(wallet_a)
        assert result.groups[0].pattern is CoordinationPatternType.COUNTER_PARTY

    def test_disjoint_markets_hours_apart_are_not_grouped(
        self, detector: CoordinatedTradingDetector, wallet_a: str, wallet_b: str, base_time: datetime
    ) -> None:
        detector.add_trades(_series(wallet_a, start=base_time, market="m1"))
        detector.add_trades(_series(wallet_b, start=base_time + timedelta(hours=10), market="m2"))

        result = detector.analyze(wallet_a)

        assert all(g.risk_level in (CoordinationRiskLevel.NONE, CoordinationRiskLevel.LOW) for g in result.groups)
        assert result.groups == ()

    def test_three_wallet_group(
        self, coordinated_pair: CoordinatedTradingDetector, wallet_a: str, wallet_b: str, wallet_c: str, base_time: datetime
    ) -> None:
        coordinated_pair.add_trades(_series(wallet_c, start=base_time, offset=timedelta(milliseconds=50)))
        result = coordinated_pair.analyze(wallet_a)

        assert result.group_count == 1
        assert set(result.groups[0].members) == {_cs(wallet_a), _cs(wallet_b), _cs(wallet_c)}
        assert len(result.groups[0].pair_analyses) == 2

    def test_complexity_bound(self, base_time: datetime) -> None:
        detector = CoordinatedTradingDetector(CoordinationSettings(max_pairs_per_wallet=2))
        for i in range(1, 11):
            detector.add_trades(_series(_wallet(i), start=base_time))

        for i in range(1, 11):
            result = detector.analyze(_wallet(i))
            assert result.wallets_compared <= 2

    def test_candidates_in_insertion_order(self, base_time: datetime) -> None:
        detector = CoordinatedTradingDetector(CoordinationSettings(max_pairs_per_wallet=2))
        for i in range(1, 6):
            detector.add_trades(_series(_wallet(i), start=base_time))

        result = detector.analyze(_wallet(5))

        assert {c.address for c in result.connected_wallets} == {_cs(_wallet(1)), _cs(_wallet(2))}

    def test_wallet_filter(
        self, coordinated_pair: CoordinatedTradingDetector, wallet_a: str, wallet_c: str, base_time: datetime
    ) -> None:
        coordinated_pair.add_trades(_series(wallet_c, start=base_time))
        result = coordinated_pair.analyze(wallet_a, AnalysisOptions(wallet_filter=frozenset({wallet_c})))

        assert result.wallets_compared == 1
        assert [c.address for c in result.connected_wallets] == [_cs(wallet_c)]

    def test_naive_time_range_is_treated_as_utc(
        self, coordinated_pair: CoordinatedTradingDetector, wallet_a: str, wallet_b: str
    ) -> None:
        options = AnalysisOptions(start_time=datetime(2024, 1, 1), end_time=datetime(2025, 1, 1))
        result = coordinated_pair.analyze(wallet_a, options)

        assert result.is_coordinated is True
        assert [c.address for c in result.connected_wallets] == [_cs(wallet_b)]

    def test_naive_trade_timestamps_are_treated_as_utc(
        self, detector: CoordinatedTradingDetector, wallet_a: str, wallet_b: str, base_time: datetime
    ) -> None:
        detector.add_trades(_series(wallet_a, start=base_time))
        detector.add_trades(
            _series(wallet_b, start=base_time.replace(tzinfo=None), offset=timedelta(milliseconds=100))
        )
        result = detector.analyze(wallet_a)

        assert result.is_coordinated is True
        group = result.groups[0]
        assert group.activity_start == base_time
        assert group.activity_end == base_time + timedelta(minutes=9, milliseconds=100)

    def test_pair_failure_is_isolated(
        self,
        coordinated_pair: CoordinatedTradingDetector,
        wallet_a: str,
        wallet_b: str,
        wallet_c: str,
        base_time: datetime,
        monkeypatch: pytest.MonkeyPatch,
    ) -> None:
        coordinated_pair.add_trades(_series(wallet_c, start=base_time))
        real_compute = coordinated_trading.compute_pair_analysis
        broken = _cs(wallet_c)

        def flaky(wallet_a, trades_a, wallet_b, trades_b, *args, **kwargs):
            if broken in (wallet_a, wallet_b):
                raise RuntimeError("corrupt record")
            return real_compute(wallet_a, trades_a, wallet_b, trades_b, *args, **kwargs)

        monkeypatch.setattr(coordinated_trading, "compute_pair_analysis", flaky)
        result = coordinated_pair.analyze(wallet_a)

        assert result.is_coordinated is True
        assert result.wallets_compared == 2
        assert set(result.groups[0].members) == {_cs(wallet_a), _cs(wallet_b)}

    def test_events(self, coordinated_pair: CoordinatedTradingDetector, wallet_a: str) -> None:
        complete = Mock()
        high_risk = Mock()
        coordinated_pair.subscribe(DetectorEvent.ANALYSIS_COMPLETE, complete)
        coordinated_pair.subscribe(DetectorEvent.HIGH_RISK_GROUP_DETECTED, high_risk)

        result = coordinated_pair.analyze(wallet_a)

        complete.assert_called_once_with({"wallet": _cs(wallet_a), "result": result})
        high_risk.assert_called_once_with({"group": result.groups[0]})

    def test_events_disabled(self, wallet_a: str, wallet_b: str, base_time: datetime) -> None:
        detector = CoordinatedTradingDetector(CoordinationSettings(enable_events=False))
        callback = Mock()
        detector.subscribe_all(callback)
        detector.add_trades(_series(wallet_a, start=base_time) + _series(wallet_b, start=base_time))
        detector.analyze(wallet_a)
        callback.assert_not_called()

    def test_failing_listener_does_not_break_analysis(
        self, coordinated_pair: CoordinatedTradingDetector, wallet_a: str
    ) -> None:
        coordinated_pair.subscribe(DetectorEvent.ANALYSIS_COMPLETE, Mock(side_effect=RuntimeError("listener")))
        assert coordinated_pair.analyze(wallet_a).is_coordinated is True


class TestGroupIndex:
    def test_queries(self, coordinated_pair: CoordinatedTradingDetector, wallet_a: str, wallet_b: str, wallet_c: str) -> None:
        coordinated_pair.analyze(wallet_a)

        assert coordinated_pair.is_coordinated(wallet_b)
        assert not coordinated_pair.is_coordinated(wallet_c)
        assert not coordinated_pair.is_coordinated("garbage")
        assert len(coordinated_pair.get_groups_for_wallet(wallet_b)) == 1
        assert len(coordinated_pair.get_high_risk_groups()) == 1
        assert len(coordinated_pair.get_groups_by_risk_level(CoordinationRiskLevel.CRITICAL)) == 1
        assert coordinated_pair.get_groups_by_risk_level(CoordinationRiskLevel.LOW) == []
        assert len(coordinated_pair.get_groups_by_pattern(CoordinationPatternType.SIMULTANEOUS)) == 1

    def test_equal_member_sets_are_replaced(
        self, coordinated_pair: CoordinatedTradingDetector, wallet_a: str, wallet_b: str
    ) -> None:
        coordinated_pair.analyze(wallet_a)
        coordinated_pair.analyze(wallet_b)

        groups = coordinated_pair.get_detected_groups()
        assert len(groups) == 1
        assert groups[0].origin_wallet == _cs(wallet_b)

    def test_reanalysis_supersedes_previous_groups(
        self, coordinated_pair: CoordinatedTradingDetector, wallet_a: str
    ) -> None:
        coordinated_pair.analyze(wallet_a)
        coordinated_pair.analyze(wallet_a, AnalysisOptions(market_filter=frozenset({"other-market"})))
        assert coordinated_pair.get_detected_groups() == []

    def test_retain_previous_groups(self, coordinated_pair: CoordinatedTradingDetector, wallet_a: str) -> None:
        coordinated_pair.analyze(wallet_a)
        coordinated_pair.analyze(
            wallet_a,
            AnalysisOptions(market_filter=frozenset({"other-market"}), retain_previous_groups=True),
        )
        assert len(coordinated_pair.get_detected_groups()) == 1

    def test_oldest_groups_evicted(self, base_time: datetime) -> None:
        detector = CoordinatedTradingDetector(CoordinationSettings(max_groups=1))
        later = base_time + timedelta(days=3)
        detector.add_trades(_series(_wallet(1), start=base_time, market="m1"))
        detector.add_trades(_series(_wallet(2), start=base_time, market="m1"))
        detector.add_trades(_series(_wallet(3), start=later, market="m2"))
        detector.add_trades(_series(_wallet(4), start=later, market="m2"))

        detector.analyze(_wallet(1))
        detector.analyze(_wallet(3))

        groups = detector.get_detected_groups()
        assert len(groups) == 1
        assert set(groups[0].members) == {_cs(_wallet(3)), _cs(_wallet(4))}


class TestBatchAnalyze:
    def test_empty_batch(self, detector: CoordinatedTradingDetector) -> None:
        batch = detector.batch_analyze([])

        assert batch.wallets_analyzed == 0
        assert batch.results_by_wallet == {}
        assert set(batch.groups_by_risk) == set(CoordinationRiskLevel)
        assert set(batch.groups_by_pattern) == set(CoordinationPatternType)
        assert all(v == 0 for v in batch.groups_by_risk.values())
        assert all(v == 0 for v in batch.groups_by_pattern.values())

    def test_batch_aggregates(
        self, coordinated_pair: CoordinatedTradingDetector, wallet_a: str, wallet_b: str
    ) -> None:
        batch = coordinated_pair.batch_analyze([wallet_a, wallet_b])

        assert batch.wallets_analyzed == 2
        assert batch.coordinated_wallet_count == 2
        assert len(batch.groups) == 1
        assert batch.groups_by_risk[CoordinationRiskLevel.CRITICAL] == 1
        assert batch.groups_by_pattern[CoordinationPatternType.SIMULTANEOUS] == 1
        assert batch.processing_time_ms >= 0

    def test_failures_do_not_abort(self, coordinated_pair: CoordinatedTradingDetector, wallet_a: str) -> None:
        batch = coordinated_pair.batch_analyze(["not-a-wallet", wallet_a])

        assert batch.wallets_analyzed == 1
        assert "not-a-wallet" in batch.failures
        assert _cs(wallet_a) in batch.results_by_wallet

    def test_batch_event(self, coordinated_pair: CoordinatedTradingDetector, wallet_a: str) -> None:
        callback = Mock()
        coordinated_pair.subscribe(DetectorEvent.BATCH_ANALYSIS_COMPLETE, callback)
        batch = coordinated_pair.batch_analyze([wallet_a])
        callback.assert_called_once_with({"result": batch})


class TestCacheLifecycle:
    def test_clear_cache_emits_event(
        self, coordinated_pair: CoordinatedTradingDetector, wallet_a: str, wallet_b: str
    ) -> None:
        coordinated_pair.analyze_pair(wallet_a, wallet_b)
        callback = Mock()
        coordinated_pair.subscribe(DetectorEvent.CACHE_CLEARED, callback)

        assert coordinated_pair.clear_cache() == 1
        callback.assert_called_once_with({"entries_removed": 1})
        assert coordinated_pair.get_cache_stats().size == 0

    def test_add_trades_does_not_emit_cache_cleared(
        self, coordinated_pair: CoordinatedTradingDetector, wallet_a: str, wallet_b: str, base_time: datetime
    ) -> None:
        coordinated_pair.analyze_pair(wallet_a, wallet_b)
        callback = Mock()
        coordinated_pair.subscribe(DetectorEvent.CACHE_CLEARED, callback)
        coordinated_pair.add_trades(_series(wallet_a, start=base_time, count=1, prefix="new"))
        callback.assert_not_called()
        assert coordinated_pair.get_cache_stats().size == 0


class TestSummary:
    def test_summary_counts(
        self, coordinated_pair: CoordinatedTradingDetector, wallet_a: str, wallet_b: str, wallet_c: str, base_time: datetime
    ) -> None:
        coordinated_pair.add_trades(_series(wallet_c, start=base_time))
        coordinated_pair.analyze(wallet_a)

        summary = coordinated_pair.get_summary()

        assert summary.total_wallets == 3
        assert summary.total_trades == 30
        assert summary.detected_groups == 1
        assert summary.coordinated_wallet_count == 3
        assert summary.groups_by_risk[CoordinationRiskLevel.CRITICAL] == 1
        assert summary.groups_by_pattern[CoordinationPatternType.UNKNOWN] == 0
        assert len(summary.high_risk_groups) == 1
        assert summary.most_connected_wallets[0].address == _cs(wallet_a)
        assert summary.most_connected_wallets[0].connection_count == 2
        assert summary.cache_stats.size == 2
        assert summary.cache_stats.ttl_seconds == 300.0
        assert summary.last_analysis_at is not None

    def test_empty_summary(self, detector: CoordinatedTradingDetector) -> None:
        summary = detector.get_summary()
        assert summary.total_wallets == 0
        assert summary.most_connected_wallets == ()
        assert summary.last_analysis_at is None
        assert set(summary.groups_by_risk) == set(CoordinationRiskLevel)


class TestConcurrency:
    def test_concurrent_ingestion_and_analysis(
        self, detector: CoordinatedTradingDetector, wallet_a: str, wallet_b: str, base_time: datetime
    ) -> None:
        detector.add_trades(_series(wallet_b, start=base_time))

        def ingest(i: int) -> None:
            detector.add_trades([_trade(wallet_a, f"c-{i}", ts=base_time + timedelta(minutes=i))])
            detector.analyze_pair(wallet_a, wallet_b)

        with ThreadPoolExecutor(max_workers=4) as pool:
            list(pool.map(ingest, range(20)))

        pair = detector.analyze_pair(wallet_a, wallet_b)
        assert len(detector.get_trades(wallet_a)) == 20
        assert pair is not None
        assert pair.total_trades_analyzed == 30


class TestSharedDetector:
    def test_get_creates_once(self) -> None:
        assert get_shared_detector() is get_shared_detector()

    def test_init_replaces_and_reset_clears(self) -> None:
        first = get_shared_detector()
        custom = init_shared_detector(CoordinationSettings(max_pairs_per_wallet=3))
        assert custom is not first
        assert get_shared_detector().settings.max_pairs_per_wallet == 3

        reset_shared_detector()
        assert get_shared_detector() is not custom

    def test_convenience_wrappers(self, wallet_a: str, wallet_b: str, base_time: datetime) -> None:
        add_trades_for_coordination(_series(wallet_a, start=base_time))
        add_trades_for_coordination(_series(wallet_b, start=base_time))

        assert analyze_wallet_coordination(wallet_a).is_coordinated
        assert is_wallet_coordinated(wallet_b)
        assert batch_analyze_coordination([wallet_b]).wallets_analyzed == 1
        assert get_coordination_summary().detected_groups == 1

    def test_instances_are_independent(self, wallet_a: str, base_time: datetime) -> None:
        one = CoordinatedTradingDetector()
        two = CoordinatedTradingDetector()
        one.add_trades(_series(wallet_a, start=base_time))
        assert two.get_trades(wallet_a) == []
