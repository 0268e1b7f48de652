"""
RoastMyWallet API
Receipt and statement ingestion, monthly quota gating and spending analytics.
"""

__version__ = "1.0.0"
