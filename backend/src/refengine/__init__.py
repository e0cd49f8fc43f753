"""Referral commission and tier engine."""

__version__ = "1.0.0"
