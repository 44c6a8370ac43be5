"""Coordination detection layer - Correlated wallet trading identification."""

from polymarket_coordination_tracker.detector.addresses import (
    InvalidWalletAddressError,
    normalize_wallet,
    to_checksum_wallet,
)
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
from polymarket_coordination_tracker.detector.events import DetectorEvent, EventBus
from polymarket_coordination_tracker.detector.models import (
    AnalysisOptions,
    BatchCoordinationResult,
    CoordinatedGroup,
    CoordinationAnalysisResult,
    CoordinationConfidence,
    CoordinationFlag,
    CoordinationPatternType,
    CoordinationRiskLevel,
    CoordinationSummary,
    PairAnalysis,
    Trade,
)

__all__ = [
    "AnalysisOptions",
    "BatchCoordinationResult",
    "CoordinatedGroup",
    "CoordinatedTradingDetector",
    "CoordinationAnalysisResult",
    "CoordinationConfidence",
    "CoordinationFlag",
    "CoordinationPatternType",
    "CoordinationRiskLevel",
    "CoordinationSummary",
    "DetectorEvent",
    "EventBus",
    "InvalidWalletAddressError",
    "PairAnalysis",
    "Trade",
    "add_trades_for_coordination",
    "analyze_wallet_coordination",
    "batch_analyze_coordination",
    "get_coordination_summary",
    "get_shared_detector",
    "init_shared_detector",
    "is_wallet_coordinated",
    "normalize_wallet",
    "reset_shared_detector",
    "to_checksum_wallet",
]
