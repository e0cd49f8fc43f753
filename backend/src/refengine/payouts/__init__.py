"""Payouts of accumulated earnings."""

from refengine.payouts.batcher import BatchSummary, PayoutBatcher
from refengine.payouts.service import PayoutService

__all__ = ["BatchSummary", "PayoutBatcher", "PayoutService"]
