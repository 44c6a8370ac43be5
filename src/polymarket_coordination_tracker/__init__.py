"""Polymarket Coordination Tracker - Coordinated wallet trading detection."""

__version__ = "0.1.0"
