"""
Adblock filtering for adfilter.

Provides network-level ad blocking and cosmetic filtering using filter lists
in the Adblock Plus / uBlock Origin syntax.
"""

from .engine import AdblockEngine, get_adblock_engine, reset_adblock_engine
from .page import PageFilter
from .rules import RequestType

__all__ = [
    "AdblockEngine",
    "PageFilter",
    "RequestType",
    "get_adblock_engine",
    "reset_adblock_engine",
]
