"""Pairwise trading similarity between two wallets.

Five sub-scores are computed independently over the (filtered) trade
histories of two wallets and combined into a weighted composite score:

- timing correlation: share of trades that pair up one-to-one with a trade
  of the other wallet inside the simultaneity window (Jaccard over trade
  events, so unmatched trades on either side pull the score down)
- market overlap: Jaccard similarity of the traded-market sets, in percent
- size similarity: mean min/max size ratio of same-market matched trades
- direction alignment: share of same-market matched trades on the same side
- win-rate correlation: closeness of the two resolved win rates

All functions are pure and symmetric in their two wallets.
"""

from __future__ import annotations

from collections import defaultdict
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import UTC, datetime

import numpy as np

from polymarket_coordination_tracker.config import CoordinationSettings, ScoreWeights
from polymarket_coordination_tracker.detector.models import (
    AnalysisOptions,
    CoordinationFlag,
    PairAnalysis,
    Trade,
)

# Flag thresholds on the 0-1 sub-scores.
TIMING_FLAG_THRESHOLD = 0.5
DIRECTION_ALIGNMENT_THRESHOLD = 0.8
OPPOSITE_DIRECTION_THRESHOLD = 0.2
BOT_TIMING_THRESHOLD = 0.9
BOT_MIN_SIMULTANEOUS_TRADES = 5

# Neutral direction value when no same-market trades line up.
NEUTRAL_DIRECTION = 0.5

MIN_FLAGS_FOR_LIKELY_COORDINATION = 2


@dataclass(frozen=True)
class MatchedTrades:
    """Trades of A and B paired one-to-one within the simultaneity window."""

    pairs: tuple[tuple[Trade, Trade], ...]

    def __len__(self) -> int:
        return len(self.pairs)


@dataclass(frozen=True)
class SubScores:
    timing_correlation: float
    simultaneous_trade_count: int
    market_overlap: float
    overlapping_markets: int
    size_similarity: float
    direction_alignment: float
    direction_pairs: int
    win_rate_correlation: float | None


def filter_trades(trades: Sequence[Trade], options: AnalysisOptions | None) -> list[Trade]:
    """Apply the time range (inclusive) and market allow-list of ``options``."""
    if options is None:
        return list(trades)
    result = list(trades)
    if options.start_time is not None:
        result = [t for t in result if t.timestamp >= options.start_time]
    if options.end_time is not None:
        result = [t for t in result if t.timestamp <= options.end_time]
    if options.market_filter:
        result = [t for t in result if t.market_id in options.market_filter]
    return result


def _sort_key(trade: Trade) -> tuple[int, str]:
    return (trade.timestamp_ms, trade.trade_id)


def match_simultaneous(
    trades_a: Sequence[Trade],
    trades_b: Sequence[Trade],
    window_ms: int,
) -> MatchedTrades:
    """Pair trades of A and B whose timestamps differ by at most ``window_ms``.

    Both sides are walked in ``(timestamp, trade_id)`` order. When the
    current heads are too far apart, the run of earlier trades that cannot
    reach the other head is skipped in one ``searchsorted`` step.
    On a line this greedy walk yields a maximum one-to-one matching, and the
    matched pairs do not depend on which wallet is passed first.
    """
    sorted_a = sorted(trades_a, key=_sort_key)
    sorted_b = sorted(trades_b, key=_sort_key)
    if not sorted_a or not sorted_b:
        return MatchedTrades(pairs=())

    ts_a = np.fromiter((t.timestamp_ms for t in sorted_a), dtype=np.int64, count=len(sorted_a))
    ts_b = np.fromiter((t.timestamp_ms for t in sorted_b), dtype=np.int64, count=len(sorted_b))

    pairs: list[tuple[Trade, Trade]] = []
    i = j = 0
    while i < len(ts_a) and j < len(ts_b):
        delta = int(ts_a[i] - ts_b[j])
        if abs(delta) <= window_ms:
            pairs.append((sorted_a[i], sorted_b[j]))
            i += 1
            j += 1
        elif delta < 0:
            i = int(np.searchsorted(ts_a, ts_b[j] - window_ms, side="left"))
        else:
            j = int(np.searchsorted(ts_b, ts_a[i] - window_ms, side="left"))
    return MatchedTrades(pairs=tuple(pairs))


def match_same_market(
    trades_a: Sequence[Trade],
    trades_b: Sequence[Trade],
    window_ms: int,
) -> MatchedTrades:
    """Like :func:`match_simultaneous`, but only pairs trades in the same market."""
    by_market_a: dict[str, list[Trade]] = defaultdict(list)
    by_market_b: dict[str, list[Trade]] = defaultdict(list)
    for t in trades_a:
        by_market_a[t.market_id].append(t)
    for t in trades_b:
        by_market_b[t.market_id].append(t)

    pairs: list[tuple[Trade, Trade]] = []
    for market_id in sorted(by_market_a.keys() & by_market_b.keys()):
        pairs.extend(match_simultaneous(by_market_a[market_id], by_market_b[market_id], window_ms).pairs)
    return MatchedTrades(pairs=tuple(pairs))


def timing_correlation(matched: int, count_a: int, count_b: int) -> float:
    """Matched trades over the union of both wallets' trade events."""
    union = count_a + count_b - matched
    if union <= 0:
        return 0.0
    return matched / union


def market_overlap(trades_a: Sequence[Trade], trades_b: Sequence[Trade]) -> tuple[float, int]:
    """Return (Jaccard overlap of traded markets in percent, shared market count)."""
    markets_a = {t.market_id for t in trades_a}
    markets_b = {t.market_id for t in trades_b}
    union = markets_a | markets_b
    if not union:
        return 0.0, 0
    shared = len(markets_a & markets_b)
    return shared / len(union) * 100.0, shared


def _size_ratio(a: np.ndarray, b: np.ndarray) -> np.ndarray:
    high = np.maximum(a, b)
    low = np.minimum(a, b)
    # Two zero-size trades are identical in size.
    return np.divide(low, high, out=np.ones_like(high), where=high > 0)


def size_similarity(
    matched: MatchedTrades,
    trades_a: Sequence[Trade],
    trades_b: Sequence[Trade],
) -> float:
    """Mean min/max size ratio over matched pairs.

    Falls back to the ratio of the wallets' average trade sizes when no
    trades line up.
    """
    if matched.pairs:
        sizes_a = np.array([float(a.size_usd) for a, _ in matched.pairs], dtype=np.float64)
        sizes_b = np.array([float(b.size_usd) for _, b in matched.pairs], dtype=np.float64)
        return float(np.mean(_size_ratio(np.abs(sizes_a), np.abs(sizes_b))))

    if not trades_a or not trades_b:
        return 0.0
    avg_a = np.abs(np.array([float(t.size_usd) for t in trades_a], dtype=np.float64)).mean()
    avg_b = np.abs(np.array([float(t.size_usd) for t in trades_b], dtype=np.float64)).mean()
    return float(_size_ratio(np.array([avg_a]), np.array([avg_b]))[0])


def direction_alignment(matched: MatchedTrades) -> float:
    """Share of matched pairs on the same side; neutral 0.5 without pairs."""
    if not matched.pairs:
        return NEUTRAL_DIRECTION
    same = sum(1 for a, b in matched.pairs if a.is_buy == b.is_buy)
    return same / len(matched.pairs)


def win_rate(trades: Sequence[Trade]) -> float | None:
    """Wins over resolved trades, or None when nothing has resolved."""
    resolved = [t for t in trades if t.is_resolved]
    if not resolved:
        return None
    return sum(1 for t in resolved if t.outcome == "win") / len(resolved)


def win_rate_correlation(trades_a: Sequence[Trade], trades_b: Sequence[Trade]) -> float | None:
    """``max(0, 1 - 2 * |wr_a - wr_b|)``, None if either side lacks outcomes."""
    wr_a = win_rate(trades_a)
    wr_b = win_rate(trades_b)
    if wr_a is None or wr_b is None:
        return None
    return max(0.0, 1.0 - 2.0 * abs(wr_a - wr_b))


def compute_sub_scores(
    trades_a: Sequence[Trade],
    trades_b: Sequence[Trade],
    window_ms: int,
) -> SubScores:
    matched = match_simultaneous(trades_a, trades_b, window_ms)
    same_market = match_same_market(trades_a, trades_b, window_ms)
    overlap, shared = market_overlap(trades_a, trades_b)
    return SubScores(
        timing_correlation=timing_correlation(len(matched), len(trades_a), len(trades_b)),
        simultaneous_trade_count=len(matched),
        market_overlap=overlap,
        overlapping_markets=shared,
        size_similarity=size_similarity(same_market, trades_a, trades_b),
        direction_alignment=direction_alignment(same_market),
        direction_pairs=len(same_market),
        win_rate_correlation=win_rate_correlation(trades_a, trades_b),
    )


def composite_score(scores: SubScores, weights: ScoreWeights) -> float:
    """Weighted composite similarity in [0, 100].

    Direction contributes its distance from neutral, so consistent copying
    and consistent counter-trading both count as coordination strength.
    A missing win-rate sub-score drops out and the remaining weights are
    renormalised.
    """
    components = {
        "timing_correlation": scores.timing_correlation,
        "market_overlap": scores.market_overlap / 100.0,
        "size_similarity": scores.size_similarity,
        "direction_alignment": abs(scores.direction_alignment - NEUTRAL_DIRECTION) * 2.0,
    }
    if scores.win_rate_correlation is not None:
        components["win_rate_correlation"] = scores.win_rate_correlation

    w = weights.as_dict()
    total_weight = sum(w[name] for name in components)
    if total_weight <= 0:
        return 0.0
    raw = sum(w[name] * value for name, value in components.items()) / total_weight * 100.0
    return round(min(100.0, max(0.0, raw)), 2)


def determine_flags(scores: SubScores, settings: CoordinationSettings) -> frozenset[CoordinationFlag]:
    """Qualitative flags raised by a set of sub-scores."""
    flags: set[CoordinationFlag] = set()

    if scores.timing_correlation > TIMING_FLAG_THRESHOLD:
        flags.add(CoordinationFlag.TIMING_CORRELATION)
    if scores.simultaneous_trade_count >= settings.min_simultaneous_trades:
        flags.add(CoordinationFlag.SEQUENTIAL_TIMING)
    if scores.size_similarity > 1.0 - settings.size_similarity_threshold:
        flags.add(CoordinationFlag.SIZE_SIMILARITY)
    if scores.overlapping_markets > 0 and scores.market_overlap >= settings.min_market_overlap:
        flags.add(CoordinationFlag.MARKET_OVERLAP)
    if scores.direction_pairs > 0:
        if scores.direction_alignment > DIRECTION_ALIGNMENT_THRESHOLD:
            flags.add(CoordinationFlag.DIRECTION_ALIGNMENT)
        elif scores.direction_alignment < OPPOSITE_DIRECTION_THRESHOLD:
            flags.add(CoordinationFlag.OPPOSITE_DIRECTIONS)
    if (
        scores.win_rate_correlation is not None
        and scores.win_rate_correlation > 1.0 - settings.win_rate_similarity_threshold
    ):
        flags.add(CoordinationFlag.WIN_RATE_SIMILARITY)
    if (
        scores.timing_correlation > BOT_TIMING_THRESHOLD
        and scores.simultaneous_trade_count > BOT_MIN_SIMULTANEOUS_TRADES
    ):
        flags.add(CoordinationFlag.BOT_INDICATORS)

    return frozenset(flags)


def compute_pair_analysis(
    wallet_a: str,
    trades_a: Sequence[Trade],
    wallet_b: str,
    trades_b: Sequence[Trade],
    settings: CoordinationSettings,
    options: AnalysisOptions | None = None,
    *,
    now: datetime | None = None,
) -> PairAnalysis | None:
    """Compare two wallets' trade histories.

    Args:
        wallet_a: First wallet (already canonical).
        trades_a: First wallet's stored trades.
        wallet_b: Second wallet (already canonical).
        trades_b: Second wallet's stored trades.
        settings: Detector thresholds and weights.
        options: Optional time range / market filter applied first.
        now: Timestamp recorded as ``computed_at``.

    Returns:
        The pair analysis, or None for a self-comparison or when either
        wallet has fewer than ``min_trades_per_wallet`` trades after
        filtering.
    """
    if wallet_a == wallet_b:
        return None

    filtered_a = filter_trades(trades_a, options)
    filtered_b = filter_trades(trades_b, options)
    if len(filtered_a) < settings.min_trades_per_wallet or len(filtered_b) < settings.min_trades_per_wallet:
        return None

    scores = compute_sub_scores(filtered_a, filtered_b, settings.simultaneous_window_ms)
    score = composite_score(scores, settings.score_weights)
    flags = determine_flags(scores, settings)

    return PairAnalysis(
        wallet_a=wallet_a,
        wallet_b=wallet_b,
        similarity_score=score,
        timing_correlation=round(scores.timing_correlation, 4),
        market_overlap=round(scores.market_overlap, 2),
        size_similarity=round(scores.size_similarity, 4),
        direction_alignment=round(scores.direction_alignment, 4),
        win_rate_correlation=(
            round(scores.win_rate_correlation, 4) if scores.win_rate_correlation is not None else None
        ),
        simultaneous_trade_count=scores.simultaneous_trade_count,
        overlapping_markets=scores.overlapping_markets,
        total_trades_analyzed=len(filtered_a) + len(filtered_b),
        flags=flags,
        is_likely_coordinated=(
            score >= settings.min_similarity_score and len(flags) >= MIN_FLAGS_FOR_LIKELY_COORDINATION
        ),
        computed_at=now or datetime.now(UTC),
    )
