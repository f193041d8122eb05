from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Callable, Optional
from express_uploader.models import BatchSummary
from express_uploader.orchestrator.core import BatchOrchestrator
from express_uploader.orchestrator.models import BatchResult, UploadItem
import asyncio
import logging
logger = logging.getLogger(__name__)


class ProcessState(Enum):
    """State of a batch process."""
    PENDING = "pending"
    RUNNING = "running"
    CANCELLED = "cancelled"
    COMPLETED = "completed"
    FAILED = "failed"


class BatchUploadProcess:
    """
    Process object for one batch pass with event-based progress tracking.

    Cancellation is cooperative: ``cancel()`` only raises the shared signal.
    The orchestrator checks it between orders and the upload in flight stops
    early; counts collected so far are kept.

    Usage:
        process = BatchUploadProcess(orchestrator, root, lookback_hours=24)
        process.on_order_selected(lambda item: print(f"Selected: {item.order_id}"))
        process.on_upload_complete(lambda item: print(f"Uploaded: {item.order_id}"))
        result = await process.wait()

        # later, upload what is still pending without rescanning
        result = await BatchUploadProcess(orchestrator, root, rescan=False).wait()
    """
    def __init__(
        self,
        orchestrator: BatchOrchestrator,
        root: Path,
        lookback_hours: Optional[float] = None,
        rescan: bool = True,
        now: Optional[datetime] = None,
    ):
        self._orchestrator = orchestrator
        self._events = orchestrator.events
        self._root = Path(root)
        self._lookback_hours = lookback_hours
        self._rescan = rescan
        self._now = now
        self._cancel_event = asyncio.Event()
        self._state = ProcessState.PENDING
        self._task: Optional[asyncio.Task] = None
        self._result: Optional[BatchResult] = None
        self._error: Optional[Exception] = None

    # Event subscription methods
    def on_start(self, callback: Callable[[], None]):
        """Called when the pass starts."""
        self._events.on("start", callback)

    def on_order_examined(self, callback: Callable[[str], None]):
        """Called before an order is examined. Receives the order id."""
        self._events.on("order_examined", callback)

    def on_order_skipped(self, callback: Callable[[UploadItem], None]):
        """Called for orders uploaded before or not qualifying."""
        self._events.on("order_skipped", callback)

    def on_order_selected(self, callback: Callable[[UploadItem], None]):
        """Called when an order qualifies and is selected for upload."""
        self._events.on("order_selected", callback)

    def on_order_failed(self, callback: Callable[[UploadItem], None]):
        """Called when examining or uploading an order failed."""
        self._events.on("order_failed", callback)

    def on_upload_start(self, callback: Callable[[UploadItem], None]):
        self._events.on("upload_start", callback)

    def on_upload_complete(self, callback: Callable[[UploadItem], None]):
        self._events.on("upload_complete", callback)

    def on_upload_cancelled(self, callback: Callable[[UploadItem], None]):
        self._events.on("upload_cancelled", callback)

    def on_summary(self, callback: Callable[[BatchSummary], None]):
        """Called after the scan and after the uploads with the current counts."""
        self._events.on("summary", callback)

    def on_finish(self, callback: Callable[[BatchResult], None]):
        """Called when the pass ends, also after a cancellation."""
        self._events.on("finish", callback)

    def on_error(self, callback: Callable[[Exception], None]):
        """Called when the pass itself fails (e.g. missing orders root)."""
        self._events.on("error", callback)

    # Control methods
    async def start(self):
        """Start the pass (non-blocking)."""
        if self._state != ProcessState.PENDING:
            raise RuntimeError(f"Cannot start process in state: {self._state}")

        self._state = ProcessState.RUNNING
        self._task = asyncio.create_task(self._run())
        await self._events.emit("start")

    def cancel(self):
        """Request cancellation. Safe to call at any time, also from a signal handler."""
        self._cancel_event.set()

    async def wait(self) -> BatchResult:
        """Wait for the pass to complete and return its result."""
        if self._state == ProcessState.PENDING:
            await self.start()

        if self._task:
            await self._task

        if self._result is None:
            self._result = BatchResult(
                summary=self._orchestrator.summary,
                items=self._orchestrator.items,
                cancelled=self._cancel_event.is_set(),
                error="Process ended without result",
            )
        return self._result

    # State properties
    @property
    def state(self) -> ProcessState:
        return self._state

    @property
    def cancel_event(self) -> asyncio.Event:
        return self._cancel_event

    @property
    def result(self) -> Optional[BatchResult]:
        """Final result (None if not completed yet)."""
        return self._result

    @property
    def is_running(self) -> bool:
        return self._state == ProcessState.RUNNING

    @property
    def is_cancelled(self) -> bool:
        return self._state == ProcessState.CANCELLED

    async def _run(self):
        try:
            if self._rescan:
                self._result = await self._orchestrator.run(
                    self._root,
                    self._lookback_hours,
                    self._cancel_event,
                    self._now,
                )
            else:
                self._result = await self._orchestrator.upload_selected(self._cancel_event)

            self._state = ProcessState.CANCELLED if self._result.cancelled else ProcessState.COMPLETED
            await self._events.emit("finish", self._result)

        except asyncio.CancelledError:
            self._state = ProcessState.CANCELLED
            raise
        except Exception as e:
            self._state = ProcessState.FAILED
            self._error = e
            logger.error(f"Batch process failed: {e}", exc_info=True)
            await self._events.emit("error", e)

            self._result = BatchResult(
                summary=self._orchestrator.summary,
                items=self._orchestrator.items,
                error=str(e),
            )
