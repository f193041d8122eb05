"""Batch orchestrator - turns an orders root and a lookback window into uploads."""
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import List, Optional, Set

from ..exceptions import UploadCancelledError
from ..models import BatchSummary, Severity, UploaderConfig
from ..protocols import IExpressClient
from ..services.order_handler import OrderHandler
from ..utils.events import EventEmitter
from .models import BatchResult, ItemOutcome, ItemState, UploadItem
from .qualification import qualify_order, select_files

logger = logging.getLogger(__name__)


def _is_cancelled(cancel_event: Optional[asyncio.Event]) -> bool:
    return cancel_event is not None and cancel_event.is_set()


class BatchOrchestrator:
    """
    Scans an orders root, qualifies recent orders and uploads them.

    A pass has two halves. ``scan`` examines every order (lifecycle state,
    earlier uploads, file selection, qualification) and keeps the qualifying
    ones selected. ``upload_selected`` uploads whatever is selected and not
    uploaded yet, so it can be called again after a cancellation to continue.
    Only one network call and one archive build are in flight at a time.

    Usage:
        orchestrator = BatchOrchestrator(client, config)
        result = await orchestrator.run(root, lookback_hours=24, cancel_event=event)
        print(result.summary.describe())
    """

    def __init__(
        self,
        client: IExpressClient,
        config: Optional[UploaderConfig] = None,
        events: Optional[EventEmitter] = None,
    ):
        self._client = client
        self._config = config or UploaderConfig()
        self._events = events or EventEmitter()
        self._summary = BatchSummary()
        self._items: List[UploadItem] = []
        # order ids uploaded by this orchestrator, kept across scans
        self._uploaded_ids: Set[str] = set()

    @property
    def events(self) -> EventEmitter:
        return self._events

    @property
    def summary(self) -> BatchSummary:
        return self._summary

    @property
    def items(self) -> List[UploadItem]:
        return list(self._items)

    def discover(self, root: Path) -> List[OrderHandler]:
        """Valid orders directly under ``root``, skipping the reserved directory."""
        handlers = []
        for order_dir in sorted(p for p in Path(root).iterdir() if p.is_dir()):
            if order_dir.name == self._config.reserved_dir_name:
                continue
            handler = OrderHandler.make_if_valid(order_dir)
            if handler is not None:
                handlers.append(handler)
        return handlers

    async def scan(
        self,
        root: Path,
        lookback_hours: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None,
        now: Optional[datetime] = None,
    ) -> List[UploadItem]:
        """
        Examine all orders under ``root`` and select the ones to upload.

        Args:
            root: Orders root directory
            lookback_hours: Only orders created within this window (default from config)
            cancel_event: Checked before each order
            now: Reference time (UTC), defaults to the current time

        Returns:
            Selected items

        Raises:
            FileNotFoundError: Orders root does not exist
            ValueError: Negative lookback window
        """
        root = Path(root)
        if not root.is_dir():
            raise FileNotFoundError(f"Orders root directory does not exist: {root}")

        hours = self._config.clamp_lookback(
            self._config.lookback_hours if lookback_hours is None else lookback_hours
        )
        cutoff = (now or datetime.now(timezone.utc)) - timedelta(hours=hours)

        self._summary = BatchSummary()
        self._items = []

        handlers = await asyncio.to_thread(self.discover, root)
        self._summary.in_directory = len(handlers)
        logger.info(f"Found {len(handlers)} order(s) in {root}, cutoff {cutoff.isoformat()}")

        for handler in handlers:
            if _is_cancelled(cancel_event):
                logger.info("Scan cancelled")
                break
            await self._events.emit("order_examined", handler.order_id)
            await self._examine(handler, cutoff)

        await self._events.emit("summary", self._summary)
        return [i for i in self._items if i.selected]

    async def _examine(self, handler: OrderHandler, cutoff: datetime) -> ItemOutcome:
        info = handler.status_info()
        if info.created_utc < cutoff or not info.is_scanned or info.is_locked:
            # no message, this is the common case
            return ItemOutcome.SKIP

        self._summary.created_in_period += 1
        item = UploadItem(handler=handler)
        self._items.append(item)

        if handler.order_id in self._uploaded_ids:
            item.uploaded = True
            self._summary.uploaded_before += 1
            item.show("uploaded earlier in this session", Severity.INFO, ItemState.UPLOADED_BEFORE)
            await self._events.emit("order_skipped", item)
            return ItemOutcome.SKIP

        try:
            records = await self._client.get_status(handler.order_id)
            if records:
                item.records = records
                self._summary.uploaded_before += 1
                text = "uploaded before" if len(records) == 1 else f"uploaded {len(records)} times before"
                item.show(text, Severity.INFO, ItemState.UPLOADED_BEFORE)
                await self._events.emit("order_skipped", item)
                return ItemOutcome.SKIP

            outcome = await select_files(self._client, handler, self._config.file_selection)
            if outcome is None:
                self._summary.not_qualified += 1
                item.show("order not recognized", Severity.WARNING, ItemState.NOT_QUALIFIED)
                await self._events.emit("order_skipped", item)
                return ItemOutcome.SKIP

            reason = await qualify_order(self._client, handler, outcome)
            if reason:
                self._summary.not_qualified += 1
                item.show(reason, Severity.WARNING, ItemState.NOT_QUALIFIED)
                await self._events.emit("order_skipped", item)
                return ItemOutcome.SKIP
        except Exception as e:
            self._summary.failed += 1
            item.show(f"Error: {e}", Severity.ERROR, ItemState.FAILED)
            logger.warning(f"[{handler.order_id}] Examination failed: {e}")
            await self._events.emit("order_failed", item)
            return ItemOutcome.SKIP

        item.outcome = outcome
        item.selected = True
        self._summary.qualified += 1
        self._summary.selected += 1
        item.show("qualifies", Severity.GOOD, ItemState.SELECTED)
        await self._events.emit("order_selected", item)
        return ItemOutcome.CONTINUE

    def set_selected(self, order_id: str, selected: bool) -> bool:
        """Select or deselect a qualified order. False if it cannot be selected."""
        for item in self._items:
            if item.order_id != order_id:
                continue
            # only orders that passed qualification carry an outcome
            if item.outcome is None or item.uploaded or item.state not in (
                ItemState.SELECTED,
                ItemState.CANCELLED,
                ItemState.FAILED,
            ):
                return False
            item.selected = selected
            self._summary.selected = sum(1 for i in self._items if i.selected)
            return True
        return False

    async def upload_selected(self, cancel_event: Optional[asyncio.Event] = None) -> BatchResult:
        """
        Upload every selected order that is not uploaded yet.

        Stops at the first cancellation; the interrupted and remaining orders
        stay selected for the next call. Other failures only affect their order.
        """
        cancelled = False
        for item in list(self._items):
            if _is_cancelled(cancel_event):
                cancelled = True
                logger.info("Uploads cancelled.")
                break
            if not item.pending:
                continue
            if await self._upload_item(item, cancel_event) is ItemOutcome.STOP:
                cancelled = True
                break

        await self._events.emit("summary", self._summary)
        return BatchResult(summary=self._summary, items=list(self._items), cancelled=cancelled)

    async def _upload_item(self, item: UploadItem, cancel_event: Optional[asyncio.Event]) -> ItemOutcome:
        # failed counts orders whose last attempt failed
        failed_before = item.state == ItemState.FAILED
        item.show("uploading...", Severity.INFO, ItemState.UPLOADING)
        await self._events.emit("upload_start", item)

        try:
            archive = await asyncio.to_thread(item.handler.build_archive, item.outcome.all_paths)
            with archive:
                await self._client.upload(item.archive_name, archive, cancel_event)
        except UploadCancelledError:
            if failed_before:
                self._summary.failed -= 1
            item.show("upload cancelled", Severity.WARNING, ItemState.CANCELLED)
            await self._events.emit("upload_cancelled", item)
            return ItemOutcome.STOP
        except Exception as e:
            if not failed_before:
                self._summary.failed += 1
            item.show(f"Error: {e}", Severity.ERROR, ItemState.FAILED)
            logger.warning(f"[{item.order_id}] Upload failed: {e}")
            await self._events.emit("order_failed", item)
            return ItemOutcome.SKIP

        if failed_before:
            self._summary.failed -= 1
        item.uploaded = True
        self._uploaded_ids.add(item.order_id)
        self._summary.uploaded_now += 1
        item.show("uploaded", Severity.GOOD, ItemState.UPLOADED)
        await self._events.emit("upload_complete", item)
        return ItemOutcome.CONTINUE

    async def run(
        self,
        root: Path,
        lookback_hours: Optional[float] = None,
        cancel_event: Optional[asyncio.Event] = None,
        now: Optional[datetime] = None,
    ) -> BatchResult:
        """Full pass: scan, then upload what was selected."""
        await self.scan(root, lookback_hours, cancel_event, now)
        if _is_cancelled(cancel_event):
            return BatchResult(summary=self._summary, items=list(self._items), cancelled=True)
        return await self.upload_selected(cancel_event)
