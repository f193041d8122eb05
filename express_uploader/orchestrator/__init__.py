"""Orchestrator package - coordinates qualification and upload of orders."""
from .core import BatchOrchestrator
from .models import BatchResult, ItemOutcome, ItemState, SingleOrderResult, UploadItem
from .process import BatchUploadProcess, ProcessState
from .single_order import SingleOrderHandler

__all__ = [
    "BatchOrchestrator",
    "BatchResult",
    "BatchUploadProcess",
    "ItemOutcome",
    "ItemState",
    "ProcessState",
    "SingleOrderHandler",
    "SingleOrderResult",
    "UploadItem",
]
