"""
Express Uploader - send dental scan orders to the Express design service.

An order is a directory written by the acquisition tool. Before upload each
order is checked locally (scanned, not locked, recent enough), against the
server (not uploaded before, files recognized, qualifies), then zipped and
streamed.

Usage:
    from express_uploader import BatchOrchestrator, ExpressClient, UploaderConfig

    config = UploaderConfig.from_env()
    async with ExpressClient(config.base_url) as client:
        await client.login(email, password, remember=False)
        orchestrator = BatchOrchestrator(client, config)
        result = await orchestrator.run(orders_root, lookback_hours=24)
        print(result.summary.describe())

    # Single order, as launched from the host application
    async with ExpressClient(config.base_url) as client:
        ...
        result = await SingleOrderHandler(client, config).handle(order_dir, auto_upload=True)
"""
from .exceptions import (
    ArchiveBuildError,
    ExpressAPIError,
    ExpressError,
    InvalidOrderError,
    UploadCancelledError,
)
from .models import (
    AuthCookie,
    BatchSummary,
    FilterOutcome,
    OrderStatusInfo,
    ResultStatus,
    Severity,
    UploaderConfig,
    UploadStatusRecord,
)
from .orchestrator import (
    BatchOrchestrator,
    BatchResult,
    BatchUploadProcess,
    SingleOrderHandler,
    SingleOrderResult,
    UploadItem,
)
from .services import ExpressClient, OrderHandler

__version__ = "0.1.0"
__all__ = [
    # Main
    "BatchOrchestrator",
    "BatchUploadProcess",
    "SingleOrderHandler",
    "ExpressClient",
    "OrderHandler",
    # Models
    "AuthCookie",
    "BatchResult",
    "BatchSummary",
    "FilterOutcome",
    "OrderStatusInfo",
    "ResultStatus",
    "Severity",
    "SingleOrderResult",
    "UploaderConfig",
    "UploadItem",
    "UploadStatusRecord",
    # Errors
    "ArchiveBuildError",
    "ExpressAPIError",
    "ExpressError",
    "InvalidOrderError",
    "UploadCancelledError",
]
