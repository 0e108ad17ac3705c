"""Aggregator clients: price quotes and signable swap transactions."""

from solrelay.routing.base import AggregatorClient, ProtectionOptions, Quote
from solrelay.routing.factory import create_aggregator

__all__ = ["AggregatorClient", "ProtectionOptions", "Quote", "create_aggregator"]
