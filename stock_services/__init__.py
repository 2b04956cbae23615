"""
stock_services -- transaction boundaries and batch helpers over the kernel.

This layer reads ``stock_config``, owns commits, and adds the caller-side
policies the kernel leaves out (conflict retry, per-item bulk isolation).
"""

from stock_services.bulk_adjustment import (
    AdjustmentOutcome,
    AdjustmentRequest,
    BulkAdjustmentResult,
    BulkAdjustmentService,
)
from stock_services.retry import retry_on_conflict
from stock_services.transfer_orchestrator import StockServices, TransferOrchestrator

__all__ = [
    "AdjustmentOutcome",
    "AdjustmentRequest",
    "BulkAdjustmentResult",
    "BulkAdjustmentService",
    "StockServices",
    "TransferOrchestrator",
    "retry_on_conflict",
]
