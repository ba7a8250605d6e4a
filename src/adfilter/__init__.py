"""
adfilter: ad and tracker filtering with Adblock Plus-style filter lists.
"""

__version__ = "0.1.0"
