"""Orchestrator data models."""
from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from ..models import BatchSummary, FilterOutcome, Severity, UploadStatusRecord
from ..services.order_handler import OrderHandler


class ItemOutcome(Enum):
    """What the batch loop does after handling one order."""
    CONTINUE = "continue"  # handled, go on with the next order
    SKIP = "skip"          # expected non-match or per-order failure, go on
    STOP = "stop"          # user cancelled, end this pass


class ItemState(Enum):
    """Where an order stands in the working set."""
    UPLOADED_BEFORE = "uploaded_before"
    NOT_QUALIFIED = "not_qualified"
    SELECTED = "selected"
    UPLOADING = "uploading"
    UPLOADED = "uploaded"
    CANCELLED = "cancelled"
    FAILED = "failed"


@dataclass
class UploadItem:
    """One order examined during a batch pass."""
    handler: OrderHandler
    state: ItemState = ItemState.SELECTED
    outcome: Optional[FilterOutcome] = None
    records: List[UploadStatusRecord] = field(default_factory=list)
    selected: bool = False
    uploaded: bool = False
    message: str = ""
    severity: Severity = Severity.INFO

    @property
    def order_id(self) -> str:
        return self.handler.order_id

    @property
    def archive_name(self) -> str:
        return f"{self.order_id}.zip"

    @property
    def pending(self) -> bool:
        """Selected but not uploaded yet; retried on the next pass."""
        return self.selected and not self.uploaded

    def show(self, message: str, severity: Severity = Severity.INFO, state: Optional[ItemState] = None):
        self.message = message
        self.severity = severity
        if state is not None:
            self.state = state


@dataclass
class BatchResult:
    """Result of one batch pass."""
    summary: BatchSummary
    items: List[UploadItem]
    cancelled: bool = False
    error: Optional[str] = None

    @property
    def selected_items(self) -> List[UploadItem]:
        return [i for i in self.items if i.selected]

    @property
    def failed_items(self) -> List[UploadItem]:
        return [i for i in self.items if i.state == ItemState.FAILED]

    @property
    def pending_items(self) -> List[UploadItem]:
        return [i for i in self.items if i.pending]

    @property
    def success(self) -> bool:
        return self.error is None and not self.cancelled and not self.failed_items


@dataclass
class SingleOrderResult:
    """Outcome of handling one order passed on the command line."""
    order_id: Optional[str]
    message: str
    severity: Severity = Severity.INFO
    records: List[UploadStatusRecord] = field(default_factory=list)
    outcome: Optional[FilterOutcome] = None
    qualified: bool = False
    uploaded: bool = False
    cancelled: bool = False
    inspect_url: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.severity != Severity.ERROR
