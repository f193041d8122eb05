"""Services for express uploader."""
from .api_client import AUTH_COOKIE_NAME, ExpressClient
from .file_filter import is_required_file, select_required_paths
from .order_handler import OrderHandler

__all__ = [
    "AUTH_COOKIE_NAME",
    "ExpressClient",
    "OrderHandler",
    "is_required_file",
    "select_required_paths",
]
