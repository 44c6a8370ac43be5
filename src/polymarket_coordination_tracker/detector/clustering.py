"""Group clustering and classification for coordinated wallets.

Surviving wallet pairs are merged into groups with a disjoint-set over
wallet addresses; each group is then classified by pattern, risk level and
confidence from its member pair analyses.
"""

from __future__ import annotations

import hashlib
from collections.abc import Callable, Iterable, Sequence
from datetime import UTC, datetime
from decimal import Decimal

from polymarket_coordination_tracker.config import (
    ConfidenceThresholds,
    CoordinationSettings,
    RiskThresholds,
)
from polymarket_coordination_tracker.detector.models import (
    CoordinatedGroup,
    CoordinationConfidence,
    CoordinationFlag,
    CoordinationPatternType,
    CoordinationRiskLevel,
    PairAnalysis,
    Trade,
    count_patterns,
)

GROUP_ID_PREFIX = "coord_"

# Risk score boosts for flags that indicate manipulation on their own.
OPPOSITE_DIRECTIONS_RISK_BOOST = 10.0
BOT_INDICATORS_RISK_BOOST = 5.0

_SAME_DIRECTION_PATTERNS = frozenset(
    {CoordinationPatternType.SIMULTANEOUS, CoordinationPatternType.MIRROR_TRADING}
)


class DisjointSet:
    """Union-find over wallet addresses with path compression and union by rank."""

    def __init__(self) -> None:
        self._parent: dict[str, str] = {}
        self._rank: dict[str, int] = {}

    def add(self, x: str) -> None:
        if x not in self._parent:
            self._parent[x] = x
            self._rank[x] = 0

    def find(self, x: str) -> str:
        """Find the representative of x's set, adding x if unseen."""
        self.add(x)
        while self._parent[x] != x:
            self._parent[x] = self._parent[self._parent[x]]
            x = self._parent[x]
        return x

    def union(self, a: str, b: str) -> None:
        ra, rb = self.find(a), self.find(b)
        if ra == rb:
            return
        if self._rank[ra] < self._rank[rb]:
            ra, rb = rb, ra
        self._parent[rb] = ra
        if self._rank[ra] == self._rank[rb]:
            self._rank[ra] += 1

    def connected(self, a: str, b: str) -> bool:
        return self.find(a) == self.find(b)

    def groups(self) -> list[list[str]]:
        """Return the sets, each in first-added order, ordered by first member."""
        by_root: dict[str, list[str]] = {}
        for x in self._parent:
            by_root.setdefault(self.find(x), []).append(x)
        return list(by_root.values())

    def __len__(self) -> int:
        return len(self._parent)


def cluster_pairs(pairs: Iterable[PairAnalysis], *, anchor: str | None = None) -> list[list[str]]:
    """Connected components of the wallet graph formed by ``pairs``.

    Args:
        pairs: Surviving pair analyses (edges).
        anchor: Wallet placed first in the disjoint-set, so its component
            comes first and starts with it.
    """
    ds = DisjointSet()
    if anchor is not None:
        ds.add(anchor)
    for pair in pairs:
        ds.union(pair.wallet_a, pair.wallet_b)
    return [members for members in ds.groups() if len(members) > 1]


def group_id_for(members: Iterable[str]) -> str:
    """Deterministic group id: the same member set always yields the same id."""
    ordered = sorted({m.lower() for m in members})
    material = "|".join(ordered).encode("utf-8")
    digest = hashlib.sha256(material).hexdigest()
    return f"{GROUP_ID_PREFIX}{digest[:24]}"


def classify_pattern(pairs: Sequence[PairAnalysis]) -> CoordinationPatternType:
    """Primary pattern of a group from its member pairs.

    Counter-party pairs and same-direction pairs are two pattern families;
    a group showing both is MULTI_PATTERN. Within the same-direction family
    the more frequent of SIMULTANEOUS and MIRROR_TRADING wins, SIMULTANEOUS
    on a tie.
    """
    counts = count_patterns(pairs)
    has_counter_party = counts[CoordinationPatternType.COUNTER_PARTY] > 0
    has_same_direction = any(counts[p] > 0 for p in _SAME_DIRECTION_PATTERNS)

    if has_counter_party and has_same_direction:
        return CoordinationPatternType.MULTI_PATTERN
    if has_counter_party:
        return CoordinationPatternType.COUNTER_PARTY
    if has_same_direction:
        if counts[CoordinationPatternType.MIRROR_TRADING] > counts[CoordinationPatternType.SIMULTANEOUS]:
            return CoordinationPatternType.MIRROR_TRADING
        return CoordinationPatternType.SIMULTANEOUS
    return CoordinationPatternType.UNKNOWN


def risk_score(score: float, flags: Iterable[CoordinationFlag]) -> float:
    """Group score boosted for manipulation flags, capped at 100."""
    flag_set = set(flags)
    adjusted = score
    if CoordinationFlag.OPPOSITE_DIRECTIONS in flag_set:
        adjusted += OPPOSITE_DIRECTIONS_RISK_BOOST
    if CoordinationFlag.BOT_INDICATORS in flag_set:
        adjusted += BOT_INDICATORS_RISK_BOOST
    return min(100.0, adjusted)


def determine_risk_level(
    score: float,
    flags: Iterable[CoordinationFlag],
    thresholds: RiskThresholds,
) -> CoordinationRiskLevel:
    adjusted = risk_score(score, flags)
    if adjusted >= thresholds.critical:
        return CoordinationRiskLevel.CRITICAL
    if adjusted >= thresholds.high:
        return CoordinationRiskLevel.HIGH
    if adjusted >= thresholds.medium:
        return CoordinationRiskLevel.MEDIUM
    if adjusted >= thresholds.low:
        return CoordinationRiskLevel.LOW
    return CoordinationRiskLevel.NONE


def determine_confidence(score: float, thresholds: ConfidenceThresholds) -> CoordinationConfidence:
    # Scores below ``very_low`` still map to VERY_LOW.
    if score >= thresholds.very_high:
        return CoordinationConfidence.VERY_HIGH
    if score >= thresholds.high:
        return CoordinationConfidence.HIGH
    if score >= thresholds.medium:
        return CoordinationConfidence.MEDIUM
    if score >= thresholds.low:
        return CoordinationConfidence.LOW
    return CoordinationConfidence.VERY_LOW


def _mean_over(pairs: Sequence[PairAnalysis], flag: CoordinationFlag, metric: Callable[[PairAnalysis], float]) -> int:
    values = [metric(p) for p in pairs if flag in p.flags]
    if not values:
        return 0
    return round(sum(values) / len(values))


def flag_reasons(flags: Iterable[CoordinationFlag], pairs: Sequence[PairAnalysis] = ()) -> tuple[str, ...]:
    """Human-readable reasons for a set of flags, in a fixed order."""
    flag_set = set(flags)
    reasons: list[str] = []

    if CoordinationFlag.TIMING_CORRELATION in flag_set:
        pct = _mean_over(pairs, CoordinationFlag.TIMING_CORRELATION, lambda p: p.timing_correlation * 100)
        reasons.append(f"Trades occur at similar times ({pct}% timing correlation)")
    if CoordinationFlag.SIZE_SIMILARITY in flag_set:
        pct = _mean_over(pairs, CoordinationFlag.SIZE_SIMILARITY, lambda p: p.size_similarity * 100)
        reasons.append(f"Similar trade sizes ({pct}% size similarity)")
    if CoordinationFlag.MARKET_OVERLAP in flag_set:
        pct = _mean_over(pairs, CoordinationFlag.MARKET_OVERLAP, lambda p: p.market_overlap)
        reasons.append(f"Trading same markets ({pct}% market overlap)")
    if CoordinationFlag.DIRECTION_ALIGNMENT in flag_set:
        reasons.append("Consistently trading same direction in shared markets")
    if CoordinationFlag.OPPOSITE_DIRECTIONS in flag_set:
        reasons.append("Trading opposite directions in same markets (potential wash trading)")
    if CoordinationFlag.WIN_RATE_SIMILARITY in flag_set:
        reasons.append("Suspiciously similar win rates")
    if CoordinationFlag.SEQUENTIAL_TIMING in flag_set:
        reasons.append("Sequential trades suggesting relay or split orders")
    if CoordinationFlag.BOT_INDICATORS in flag_set:
        reasons.append("Bot-like precision in timing")

    return tuple(reasons)


def build_group(
    *,
    origin_wallet: str,
    members: Sequence[str],
    pairs: Sequence[PairAnalysis],
    trades_by_wallet: dict[str, list[Trade]],
    settings: CoordinationSettings,
    now: datetime | None = None,
) -> CoordinatedGroup | None:
    """Classify one connected component into a CoordinatedGroup.

    Members beyond ``max_group_size`` are dropped, keeping the origin wallet
    and then the most similar wallets. Returns None when fewer than
    ``min_group_size`` members remain.
    """
    best_score: dict[str, float] = {}
    for pair in pairs:
        for wallet in pair.wallets:
            best_score[wallet] = max(best_score.get(wallet, 0.0), pair.similarity_score)

    others = sorted((m for m in members if m != origin_wallet), key=lambda m: (-best_score.get(m, 0.0), m))
    ordered = ([origin_wallet] if origin_wallet in members else []) + others
    kept = ordered[: settings.max_group_size]
    if len(kept) < settings.min_group_size:
        return None

    kept_set = set(kept)
    kept_pairs = tuple(p for p in pairs if p.wallet_a in kept_set and p.wallet_b in kept_set)
    if not kept_pairs:
        return None

    group_trades = [t for m in kept for t in trades_by_wallet.get(m, [])]
    markets_by_member = [{t.market_id for t in trades_by_wallet.get(m, [])} for m in kept]
    markets_traded: list[str] = []
    seen: set[str] = set()
    for t in group_trades:
        if t.market_id not in seen:
            seen.add(t.market_id)
            markets_traded.append(t.market_id)
    common = set.intersection(*markets_by_member) if markets_by_member else set()

    score = round(sum(p.similarity_score for p in kept_pairs) / len(kept_pairs), 2)
    flags = frozenset(f for p in kept_pairs for f in p.flags)
    timestamps = [t.timestamp for t in group_trades]

    return CoordinatedGroup(
        group_id=group_id_for(kept),
        members=tuple(kept),
        origin_wallet=origin_wallet,
        pattern=classify_pattern(kept_pairs),
        confidence=determine_confidence(score, settings.confidence_thresholds),
        risk_level=determine_risk_level(score, flags, settings.risk_thresholds),
        coordination_score=score,
        total_trades=len(group_trades),
        total_volume_usd=sum((t.size_usd for t in group_trades), Decimal("0")),
        markets_traded=tuple(markets_traded),
        common_markets=tuple(m for m in markets_traded if m in common),
        pair_analyses=kept_pairs,
        flags=flags,
        flag_reasons=flag_reasons(flags, kept_pairs),
        activity_start=min(timestamps) if timestamps else None,
        activity_end=max(timestamps) if timestamps else None,
        detected_at=now or datetime.now(UTC),
    )
