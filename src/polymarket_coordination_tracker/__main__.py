"""Command-line entry point: run coordination analysis over a JSON trade file.

Usage:
    python -m polymarket_coordination_tracker trades.json [--wallet 0x...] [--pretty]
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any

from polymarket_coordination_tracker.config import get_settings
from polymarket_coordination_tracker.detector.coordinated_trading import CoordinatedTradingDetector
from polymarket_coordination_tracker.detector.models import Trade

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_BAD_INPUT = 2


def load_trades(path: Path) -> list[Trade]:
    """Load trade payloads from a JSON list (or an object with a ``trades`` list).

    Records that cannot be parsed are skipped with a warning.

    Raises:
        OSError: If the file cannot be read.
        ValueError: If the file is not JSON or holds no trade list.
    """
    raw: Any = json.loads(path.read_text(encoding="utf-8"))
    if isinstance(raw, dict):
        raw = raw.get("trades")
    if not isinstance(raw, list):
        raise ValueError(f"{path} does not contain a list of trades")

    trades: list[Trade] = []
    for i, item in enumerate(raw):
        if not isinstance(item, dict):
            logger.warning("Skipping trade record %d: not an object", i)
            continue
        try:
            trades.append(Trade.from_dict(item))
        except ValueError as e:
            logger.warning("Skipping trade record %d: %s", i, e)
    return trades


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(
        prog="polymarket_coordination_tracker",
        description="Detect coordinated trading groups in a JSON file of trades.",
    )
    parser.add_argument("trades", type=Path, help="JSON file with a list of trade payloads")
    parser.add_argument(
        "--wallet",
        action="append",
        default=[],
        help="Wallet to analyze (repeatable; default: every tracked wallet)",
    )
    parser.add_argument("--pretty", action="store_true", help="Indent JSON output")
    args = parser.parse_args(argv)

    settings = get_settings()
    logging.basicConfig(
        level=settings.get_logging_level(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    try:
        trades = load_trades(args.trades)
    except (OSError, ValueError) as e:
        logger.error("Cannot load trades: %s", e)
        return EXIT_BAD_INPUT

    detector = CoordinatedTradingDetector(settings.coordination)
    detector.add_trades(trades)
    wallets = args.wallet or detector.get_tracked_wallets()
    batch = detector.batch_analyze(wallets)

    output = {"batch": batch.to_dict(), "summary": detector.get_summary().to_dict()}
    json.dump(output, sys.stdout, indent=2 if args.pretty else None)
    sys.stdout.write("\n")
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
