"""Single order flow: report status of an earlier upload, or qualify and upload."""
import asyncio
import logging
from pathlib import Path
from typing import Optional

from ..exceptions import UploadCancelledError
from ..models import ResultStatus, Severity, UploadStatusRecord, UploaderConfig
from ..protocols import IExpressClient
from ..services.order_handler import OrderHandler
from .models import SingleOrderResult
from .qualification import qualify_order, select_files

logger = logging.getLogger(__name__)


def _reviewed_local(record: UploadStatusRecord) -> str:
    if record.reviewed_utc is None:
        return "?"
    return record.reviewed_utc.astimezone().strftime("%Y-%m-%d %H:%M")


class SingleOrderHandler:
    """Handles the order the host application was launched for."""

    def __init__(self, client: IExpressClient, config: Optional[UploaderConfig] = None):
        self._client = client
        self._config = config or UploaderConfig()

    def describe_record(self, order_id: str, record: UploadStatusRecord) -> SingleOrderResult:
        """Message for an order that was uploaded exactly once."""
        result = SingleOrderResult(order_id=order_id, message="", records=[record])
        status = record.status

        if status == ResultStatus.NEW:
            result.message = "Design is ready for review on the web site."
            result.severity = Severity.GOOD
            if record.eid:
                result.inspect_url = self._client.inspect_url(record.eid)
        elif status == ResultStatus.ACCEPTED:
            result.message = f"Design was accepted and downloaded at {_reviewed_local(record)}."
        elif status == ResultStatus.REJECTED:
            result.message = f"Design was rejected at {_reviewed_local(record)}."
        elif status == ResultStatus.IN_PROGRESS:
            result.message = "Design is in progress."
        elif status == ResultStatus.FAILED:
            result.message = "Design failed. See details on the web site."
            result.severity = Severity.WARNING
        elif status == ResultStatus.FORWARDED:
            result.message = "Design was forwarded. See details on the web site."
        elif record.status_code is None:
            result.message = "No status information for this order. Please go to the web site."
            result.severity = Severity.WARNING
        else:
            result.message = "Unknown status information for this order. Please go to the web site."
            result.severity = Severity.WARNING
        return result

    async def handle(self, order_dir: Path, auto_upload: bool = False) -> SingleOrderResult:
        """
        Check status, qualify, and upload if ``auto_upload``.

        Raises:
            ExpressAPIError: Status lookup, filtering or qualification failed
        """
        handler = OrderHandler.make_if_valid(order_dir)
        if handler is None:
            return SingleOrderResult(
                order_id=None,
                message=f"{Path(order_dir).absolute()} is not a valid order directory",
                severity=Severity.ERROR,
            )

        order_id = handler.order_id
        records = await self._client.get_status(order_id)
        if len(records) > 1:
            return SingleOrderResult(
                order_id=order_id,
                message="This order has been uploaded multiple times. For details, please go to the web site.",
                records=records,
            )
        if len(records) == 1:
            return self.describe_record(order_id, records[0])

        logger.info(f"[{order_id}] Order is new")
        outcome = await select_files(self._client, handler, self._config.file_selection)
        if outcome is None:
            return SingleOrderResult(
                order_id=order_id,
                message="This order is not recognized by the design service.",
                severity=Severity.WARNING,
            )

        reason = await qualify_order(self._client, handler, outcome)
        if reason:
            return SingleOrderResult(order_id=order_id, message=reason, severity=Severity.WARNING, outcome=outcome)

        if not auto_upload:
            return SingleOrderResult(
                order_id=order_id,
                message="Order is new and qualifies for design.",
                severity=Severity.GOOD,
                outcome=outcome,
                qualified=True,
            )
        return await self.upload(handler, outcome.all_paths, cancel_event=None)

    async def upload(
        self,
        handler: OrderHandler,
        relative_paths,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> SingleOrderResult:
        """Upload a qualified order. Failures come back as an error result."""
        order_id = handler.order_id
        try:
            archive = await asyncio.to_thread(handler.build_archive, list(relative_paths))
            with archive:
                await self._client.upload(f"{order_id}.zip", archive, cancel_event)
        except UploadCancelledError:
            return SingleOrderResult(
                order_id=order_id,
                message="Upload cancelled.",
                severity=Severity.WARNING,
                qualified=True,
                cancelled=True,
            )
        except Exception as e:
            logger.error(f"[{order_id}] Upload failed: {e}", exc_info=True)
            return SingleOrderResult(
                order_id=order_id,
                message=f"Error during upload: {e}",
                severity=Severity.ERROR,
                qualified=True,
            )

        return SingleOrderResult(
            order_id=order_id,
            message="Sent for design.",
            severity=Severity.GOOD,
            qualified=True,
            uploaded=True,
        )
