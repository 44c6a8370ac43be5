"""Data models for the coordinated trading detector."""

from __future__ import annotations

import contextlib
from collections import Counter
from collections.abc import Iterable
from dataclasses import dataclass, field, replace
from datetime import UTC, datetime
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Literal

TradeSide = Literal["BUY", "SELL"]
TradeOutcome = Literal["win", "loss", "pending"]

# Timing correlation above which same-direction pairs count as simultaneous.
SIMULTANEOUS_TIMING_THRESHOLD = 0.8


class CoordinationPatternType(str, Enum):
    """Primary coordination pattern of a pair or group."""

    UNKNOWN = "UNKNOWN"
    SIMULTANEOUS = "SIMULTANEOUS"
    MIRROR_TRADING = "MIRROR_TRADING"
    COUNTER_PARTY = "COUNTER_PARTY"
    MULTI_PATTERN = "MULTI_PATTERN"


class CoordinationRiskLevel(str, Enum):
    """Risk level for a coordinated group, ordered NONE < ... < CRITICAL."""

    NONE = "NONE"
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"

    @property
    def rank(self) -> int:
        return _RISK_ORDER.index(self)


_RISK_ORDER = tuple(CoordinationRiskLevel)


class CoordinationConfidence(str, Enum):
    """Confidence in a coordination detection."""

    VERY_LOW = "VERY_LOW"
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    VERY_HIGH = "VERY_HIGH"


class CoordinationFlag(str, Enum):
    """Qualitative reasons a wallet pair looks coordinated."""

    TIMING_CORRELATION = "TIMING_CORRELATION"
    SEQUENTIAL_TIMING = "SEQUENTIAL_TIMING"
    SIZE_SIMILARITY = "SIZE_SIMILARITY"
    MARKET_OVERLAP = "MARKET_OVERLAP"
    DIRECTION_ALIGNMENT = "DIRECTION_ALIGNMENT"
    OPPOSITE_DIRECTIONS = "OPPOSITE_DIRECTIONS"
    WIN_RATE_SIMILARITY = "WIN_RATE_SIMILARITY"
    BOT_INDICATORS = "BOT_INDICATORS"


_PATTERN_DESCRIPTIONS = {
    CoordinationPatternType.UNKNOWN: "Unknown coordination pattern",
    CoordinationPatternType.SIMULTANEOUS: "Wallets trading same markets at the same time",
    CoordinationPatternType.MIRROR_TRADING: "Wallets making identical trade decisions",
    CoordinationPatternType.COUNTER_PARTY: "Wallets trading opposite sides (potential wash trading)",
    CoordinationPatternType.MULTI_PATTERN: "Multiple coordination patterns detected",
}

_RISK_DESCRIPTIONS = {
    CoordinationRiskLevel.NONE: "No significant coordination risk",
    CoordinationRiskLevel.LOW: "Low risk - may be coincidental",
    CoordinationRiskLevel.MEDIUM: "Medium risk - warrants monitoring",
    CoordinationRiskLevel.HIGH: "High risk - likely coordinated activity",
    CoordinationRiskLevel.CRITICAL: "Critical - strong manipulation indicators",
}

_CONFIDENCE_DESCRIPTIONS = {
    CoordinationConfidence.VERY_LOW: "Very low confidence - minimal data",
    CoordinationConfidence.LOW: "Low confidence",
    CoordinationConfidence.MEDIUM: "Medium confidence",
    CoordinationConfidence.HIGH: "High confidence",
    CoordinationConfidence.VERY_HIGH: "Very high confidence - strong evidence",
}

_FLAG_DESCRIPTIONS = {
    CoordinationFlag.TIMING_CORRELATION: "Trades occur at similar times",
    CoordinationFlag.SEQUENTIAL_TIMING: "Sequential trade timing",
    CoordinationFlag.SIZE_SIMILARITY: "Similar trade sizes",
    CoordinationFlag.MARKET_OVERLAP: "Trading same markets",
    CoordinationFlag.DIRECTION_ALIGNMENT: "Consistently same direction trades",
    CoordinationFlag.OPPOSITE_DIRECTIONS: "Opposite direction trades (wash trading indicator)",
    CoordinationFlag.WIN_RATE_SIMILARITY: "Similar win rates",
    CoordinationFlag.BOT_INDICATORS: "Bot-like precision",
}


def describe_pattern(pattern: CoordinationPatternType) -> str:
    return _PATTERN_DESCRIPTIONS[pattern]


def describe_risk_level(level: CoordinationRiskLevel) -> str:
    return _RISK_DESCRIPTIONS[level]


def describe_confidence(confidence: CoordinationConfidence) -> str:
    return _CONFIDENCE_DESCRIPTIONS[confidence]


def describe_flag(flag: CoordinationFlag) -> str:
    return _FLAG_DESCRIPTIONS[flag]


def empty_risk_counts() -> dict[CoordinationRiskLevel, int]:
    """Return a counter with every risk level present and zero."""
    return {level: 0 for level in CoordinationRiskLevel}


def empty_pattern_counts() -> dict[CoordinationPatternType, int]:
    """Return a counter with every pattern type present and zero."""
    return {pattern: 0 for pattern in CoordinationPatternType}


def _as_utc(value: datetime) -> datetime:
    """Naive datetimes are taken as UTC; aware ones are converted to UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def _parse_timestamp(raw: Any) -> datetime:
    if isinstance(raw, datetime):
        return _as_utc(raw)
    if isinstance(raw, (int, float)) and not isinstance(raw, bool):
        ts_f = float(raw)
        # Epoch milliseconds vs seconds
        if ts_f > 1e12:
            ts_f /= 1000.0
        return datetime.fromtimestamp(ts_f, tz=UTC)
    if isinstance(raw, str):
        with contextlib.suppress(ValueError):
            return _parse_timestamp(float(raw))
        return _as_utc(datetime.fromisoformat(raw.replace("Z", "+00:00")))
    raise ValueError(f"Unsupported trade timestamp: {raw!r}")


def _to_decimal(raw: Any, *, name: str) -> Decimal:
    try:
        return Decimal(str(raw))
    except InvalidOperation as e:
        raise ValueError(f"Invalid {name}: {raw!r}") from e


def _first(data: dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = data.get(key)
        if value is not None and value != "":
            return value
    return None


@dataclass(frozen=True)
class Trade:
    """A normalized trade record, identified by ``trade_id`` within its wallet.

    Attributes:
        trade_id: Unique trade identifier (transaction hash or feed id).
        wallet_address: Trader wallet; checksummed once stored.
        market_id: Market condition ID.
        side: BUY or SELL.
        size_usd: Trade size in USD.
        price: Execution price.
        timestamp: Execution time (UTC).
        outcome: Resolution of the position, if known.
        market_category: Optional market category label.
    """

    trade_id: str
    wallet_address: str
    market_id: str
    side: TradeSide
    size_usd: Decimal
    price: Decimal
    timestamp: datetime
    outcome: TradeOutcome | None = None
    market_category: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "timestamp", _as_utc(self.timestamp))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Trade:
        """Create a Trade from a feed payload.

        Accepts camelCase or snake_case keys, epoch seconds, epoch
        milliseconds or ISO-8601 timestamps, and a case-insensitive side.

        Raises:
            ValueError: If the payload has no trade id or an unusable field.
        """
        trade_id = _first(data, "tradeId", "trade_id", "id", "transactionHash", "transaction_hash")
        if trade_id is None:
            raise ValueError("Trade payload has no trade id")

        side_raw = str(data.get("side", "")).upper()
        if side_raw not in ("BUY", "SELL"):
            raise ValueError(f"Invalid trade side: {data.get('side')!r}")
        side: TradeSide = "BUY" if side_raw == "BUY" else "SELL"

        outcome_raw = data.get("outcome")
        outcome: TradeOutcome | None = None
        if isinstance(outcome_raw, str) and outcome_raw.lower() in ("win", "loss", "pending"):
            outcome = outcome_raw.lower()  # type: ignore[assignment]
        elif isinstance(data.get("isWin"), bool):
            outcome = "win" if data["isWin"] else "loss"

        category = _first(data, "marketCategory", "market_category", "category")

        return cls(
            trade_id=str(trade_id),
            wallet_address=str(_first(data, "walletAddress", "wallet_address", "proxyWallet", "wallet") or ""),
            market_id=str(_first(data, "marketId", "market_id", "conditionId", "market") or ""),
            side=side,
            size_usd=_to_decimal(_first(data, "sizeUsd", "size_usd", "usdcSize", "size") or 0, name="size"),
            price=_to_decimal(data.get("price", 0), name="price"),
            timestamp=_parse_timestamp(_first(data, "timestamp", "time")),
            outcome=outcome,
            market_category=str(category) if category is not None else None,
        )

    @property
    def timestamp_ms(self) -> int:
        """Return the trade time as epoch milliseconds."""
        return round(self.timestamp.timestamp() * 1000)

    @property
    def is_buy(self) -> bool:
        return self.side == "BUY"

    @property
    def is_resolved(self) -> bool:
        """Return True if the trade has a win/loss outcome."""
        return self.outcome in ("win", "loss")

    @property
    def notional_value(self) -> Decimal:
        """Return price * size."""
        return self.price * self.size_usd

    def with_wallet(self, wallet_address: str) -> Trade:
        return replace(self, wallet_address=wallet_address)

    def to_dict(self) -> dict[str, object]:
        return {
            "trade_id": self.trade_id,
            "wallet_address": self.wallet_address,
            "market_id": self.market_id,
            "side": self.side,
            "size_usd": str(self.size_usd),
            "price": str(self.price),
            "timestamp": self.timestamp.isoformat(),
            "timestamp_ms": self.timestamp_ms,
            "outcome": self.outcome,
            "market_category": self.market_category,
        }


@dataclass(frozen=True)
class AnalysisOptions:
    """Per-call options for pairwise and wallet analysis.

    Attributes:
        start_time: Only consider trades at or after this time.
        end_time: Only consider trades at or before this time.
        market_filter: Only consider trades in these markets (empty = all).
        wallet_filter: Only compare against these wallets (empty = all).
        bypass_cache: Recompute pair analyses and refresh the cache.
        retain_previous_groups: Keep groups from earlier analyses of the
            same wallet instead of superseding them.
    """

    start_time: datetime | None = None
    end_time: datetime | None = None
    market_filter: frozenset[str] | None = None
    wallet_filter: frozenset[str] | None = None
    bypass_cache: bool = False
    retain_previous_groups: bool = False

    def __post_init__(self) -> None:
        # Empty filters mean "no filter"; any iterable is accepted.
        for name in ("market_filter", "wallet_filter"):
            value: Iterable[str] | None = getattr(self, name)
            object.__setattr__(self, name, frozenset(value) if value else None)
        for name in ("start_time", "end_time"):
            bound: datetime | None = getattr(self, name)
            if bound is not None:
                object.__setattr__(self, name, _as_utc(bound))

    @property
    def filter_signature(self) -> tuple[datetime | None, datetime | None, tuple[str, ...] | None]:
        """Hashable description of the filters that change a pair analysis.

        Bounds are kept at full precision, as ``filter_trades`` compares them.
        """
        return (
            self.start_time,
            self.end_time,
            tuple(sorted(self.market_filter)) if self.market_filter else None,
        )


@dataclass(frozen=True)
class PairAnalysis:
    """Similarity metrics between two wallets.

    Attributes:
        wallet_a: First wallet (checksummed).
        wallet_b: Second wallet (checksummed).
        similarity_score: Weighted composite score (0-100).
        timing_correlation: Share of simultaneously matched trades (0-1).
        market_overlap: Jaccard overlap of traded markets (0-100).
        size_similarity: Similarity of matched trade sizes (0-1).
        direction_alignment: 1 = always same side, 0 = always opposite.
        win_rate_correlation: Win-rate similarity (0-1), None without outcomes.
        simultaneous_trade_count: Matched trade pairs within the window.
        overlapping_markets: Number of markets traded by both wallets.
        total_trades_analyzed: Trades from both wallets after filtering.
        flags: Qualitative coordination flags.
        is_likely_coordinated: Score above threshold with two or more flags.
        computed_at: When this analysis was computed.
    """

    wallet_a: str
    wallet_b: str
    similarity_score: float
    timing_correlation: float
    market_overlap: float
    size_similarity: float
    direction_alignment: float
    win_rate_correlation: float | None
    simultaneous_trade_count: int
    overlapping_markets: int
    total_trades_analyzed: int
    flags: frozenset[CoordinationFlag]
    is_likely_coordinated: bool
    computed_at: datetime = field(default_factory=lambda: datetime.now(UTC), compare=False)

    @property
    def wallets(self) -> tuple[str, str]:
        return (self.wallet_a, self.wallet_b)

    def other(self, wallet: str) -> str:
        """Return the counterpart of ``wallet`` in this pair."""
        return self.wallet_b if wallet == self.wallet_a else self.wallet_a

    def swapped(self) -> PairAnalysis:
        """Return the same analysis with wallet labels exchanged."""
        return replace(self, wallet_a=self.wallet_b, wallet_b=self.wallet_a)

    @property
    def pattern(self) -> CoordinationPatternType:
        """Pattern suggested by this pair on its own."""
        if CoordinationFlag.OPPOSITE_DIRECTIONS in self.flags:
            return CoordinationPatternType.COUNTER_PARTY
        if CoordinationFlag.DIRECTION_ALIGNMENT in self.flags:
            if (
                CoordinationFlag.TIMING_CORRELATION in self.flags
                and self.timing_correlation > SIMULTANEOUS_TIMING_THRESHOLD
            ):
                return CoordinationPatternType.SIMULTANEOUS
            return CoordinationPatternType.MIRROR_TRADING
        return CoordinationPatternType.UNKNOWN

    def to_dict(self) -> dict[str, object]:
        return {
            "wallet_a": self.wallet_a,
            "wallet_b": self.wallet_b,
            "similarity_score": self.similarity_score,
            "timing_correlation": self.timing_correlation,
            "market_overlap": self.market_overlap,
            "size_similarity": self.size_similarity,
            "direction_alignment": self.direction_alignment,
            "win_rate_correlation": self.win_rate_correlation,
            "simultaneous_trade_count": self.simultaneous_trade_count,
            "overlapping_markets": self.overlapping_markets,
            "total_trades_analyzed": self.total_trades_analyzed,
            "flags": sorted(f.value for f in self.flags),
            "is_likely_coordinated": self.is_likely_coordinated,
            "pattern": self.pattern.value,
            "computed_at": self.computed_at.isoformat(),
        }


@dataclass(frozen=True)
class CoordinatedGroup:
    """A cluster of wallets connected by above-threshold pair similarity.

    Attributes:
        group_id: Deterministic identifier derived from the member set.
        members: Member wallets, focal wallet first.
        origin_wallet: Wallet whose analysis produced this group.
        pattern: Primary coordination pattern.
        confidence: Confidence level from the group score.
        risk_level: Risk level from the flag-adjusted group score.
        coordination_score: Mean member pair similarity (0-100).
        pair_analyses: Pair analyses that justified membership.
    """

    group_id: str
    members: tuple[str, ...]
    origin_wallet: str
    pattern: CoordinationPatternType
    confidence: CoordinationConfidence
    risk_level: CoordinationRiskLevel
    coordination_score: float
    total_trades: int
    total_volume_usd: Decimal
    markets_traded: tuple[str, ...]
    common_markets: tuple[str, ...]
    pair_analyses: tuple[PairAnalysis, ...]
    flags: frozenset[CoordinationFlag]
    flag_reasons: tuple[str, ...]
    activity_start: datetime | None
    activity_end: datetime | None
    detected_at: datetime = field(default_factory=lambda: datetime.now(UTC), compare=False)

    @property
    def member_count(self) -> int:
        return len(self.members)

    @property
    def member_set(self) -> frozenset[str]:
        return frozenset(self.members)

    @property
    def is_high_risk(self) -> bool:
        """Return True for HIGH or CRITICAL risk."""
        return self.risk_level.rank >= CoordinationRiskLevel.HIGH.rank

    @property
    def activity_duration_seconds(self) -> float:
        if self.activity_start is None or self.activity_end is None:
            return 0.0
        return (self.activity_end - self.activity_start).total_seconds()

    def to_dict(self) -> dict[str, object]:
        """Serialize to dictionary for downstream alerting."""
        return {
            "group_id": self.group_id,
            "members": list(self.members),
            "member_count": self.member_count,
            "origin_wallet": self.origin_wallet,
            "pattern": self.pattern.value,
            "pattern_description": describe_pattern(self.pattern),
            "confidence": self.confidence.value,
            "confidence_description": describe_confidence(self.confidence),
            "risk_level": self.risk_level.value,
            "risk_description": describe_risk_level(self.risk_level),
            "coordination_score": self.coordination_score,
            "total_trades": self.total_trades,
            "total_volume_usd": str(self.total_volume_usd),
            "markets_traded": list(self.markets_traded),
            "common_markets": list(self.common_markets),
            "pair_analyses": [p.to_dict() for p in self.pair_analyses],
            "flags": sorted(f.value for f in self.flags),
            "flag_descriptions": {f.value: describe_flag(f) for f in sorted(self.flags, key=lambda f: f.value)},
            "flag_reasons": list(self.flag_reasons),
            "activity_start": self.activity_start.isoformat() if self.activity_start else None,
            "activity_end": self.activity_end.isoformat() if self.activity_end else None,
            "activity_duration_seconds": self.activity_duration_seconds,
            "detected_at": self.detected_at.isoformat(),
        }


@dataclass(frozen=True)
class ConnectedWallet:
    """A wallet connected to the analyzed wallet by an above-threshold pair."""

    address: str
    similarity_score: float
    pattern: CoordinationPatternType


@dataclass(frozen=True)
class CoordinationAnalysisResult:
    """Result of analyzing one wallet for coordination."""

    wallet_address: str
    groups: tuple[CoordinatedGroup, ...]
    is_coordinated: bool
    highest_risk_level: CoordinationRiskLevel
    connected_wallets: tuple[ConnectedWallet, ...]
    wallets_compared: int
    analyzed_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @property
    def group_count(self) -> int:
        return len(self.groups)

    def to_dict(self) -> dict[str, object]:
        return {
            "wallet_address": self.wallet_address,
            "is_coordinated": self.is_coordinated,
            "group_count": self.group_count,
            "group_ids": [g.group_id for g in self.groups],
            "highest_risk_level": self.highest_risk_level.value,
            "connected_wallets": [
                {"address": c.address, "similarity_score": c.similarity_score, "pattern": c.pattern.value}
                for c in self.connected_wallets
            ],
            "wallets_compared": self.wallets_compared,
            "analyzed_at": self.analyzed_at.isoformat(),
        }


@dataclass(frozen=True)
class BatchCoordinationResult:
    """Aggregated result of analyzing a set of wallets."""

    results_by_wallet: dict[str, CoordinationAnalysisResult]
    groups: tuple[CoordinatedGroup, ...]
    wallets_analyzed: int
    coordinated_wallet_count: int
    groups_by_risk: dict[CoordinationRiskLevel, int]
    groups_by_pattern: dict[CoordinationPatternType, int]
    failures: dict[str, str]
    processing_time_ms: float
    analyzed_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    def to_dict(self) -> dict[str, object]:
        return {
            "wallets_analyzed": self.wallets_analyzed,
            "coordinated_wallet_count": self.coordinated_wallet_count,
            "results_by_wallet": {w: r.to_dict() for w, r in self.results_by_wallet.items()},
            "groups": [g.to_dict() for g in self.groups],
            "groups_by_risk": {k.value: v for k, v in self.groups_by_risk.items()},
            "groups_by_pattern": {k.value: v for k, v in self.groups_by_pattern.items()},
            "failures": dict(self.failures),
            "processing_time_ms": self.processing_time_ms,
            "analyzed_at": self.analyzed_at.isoformat(),
        }


@dataclass(frozen=True)
class CacheStats:
    size: int
    hits: int
    misses: int
    ttl_seconds: float


@dataclass(frozen=True)
class MostConnectedWallet:
    """A wallet ranked by the number of distinct wallets it is paired with."""

    address: str
    connection_count: int
    group_count: int
    avg_similarity: float


@dataclass(frozen=True)
class CoordinationSummary:
    """Process-wide detector counters for dashboards and health checks."""

    total_wallets: int
    total_trades: int
    detected_groups: int
    groups_by_risk: dict[CoordinationRiskLevel, int]
    groups_by_pattern: dict[CoordinationPatternType, int]
    coordinated_wallet_count: int
    high_risk_groups: tuple[CoordinatedGroup, ...]
    most_connected_wallets: tuple[MostConnectedWallet, ...]
    cache_stats: CacheStats
    last_analysis_at: datetime | None

    def to_dict(self) -> dict[str, object]:
        return {
            "total_wallets": self.total_wallets,
            "total_trades": self.total_trades,
            "detected_groups": self.detected_groups,
            "groups_by_risk": {k.value: v for k, v in self.groups_by_risk.items()},
            "groups_by_pattern": {k.value: v for k, v in self.groups_by_pattern.items()},
            "coordinated_wallet_count": self.coordinated_wallet_count,
            "high_risk_group_ids": [g.group_id for g in self.high_risk_groups],
            "most_connected_wallets": [
                {
                    "address": w.address,
                    "connection_count": w.connection_count,
                    "group_count": w.group_count,
                    "avg_similarity": w.avg_similarity,
                }
                for w in self.most_connected_wallets
            ],
            "cache_stats": {
                "size": self.cache_stats.size,
                "hits": self.cache_stats.hits,
                "misses": self.cache_stats.misses,
                "ttl_seconds": self.cache_stats.ttl_seconds,
            },
            "last_analysis_at": self.last_analysis_at.isoformat() if self.last_analysis_at else None,
        }


def count_patterns(pairs: Iterable[PairAnalysis]) -> Counter[CoordinationPatternType]:
    """Count per-pair patterns, ignoring UNKNOWN."""
    return Counter(p.pattern for p in pairs if p.pattern is not CoordinationPatternType.UNKNOWN)
