"""Payout settlement engine for milk cooperatives."""

__version__ = "1.0.0"
