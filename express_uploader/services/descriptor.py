"""
Order descriptor reading.

The descriptor is externally owned and only partly documented, so it is
queried as a generic node tree: find the first node whose ``type`` is the
order marker, then its children by ``name``.
"""
import logging
import xml.etree.ElementTree as ET
from datetime import datetime, timezone
from pathlib import Path
from typing import Callable, Iterable, Optional, Union

from ..models import EPOCH_UTC, OrderStatusInfo

logger = logging.getLogger(__name__)

ORDER_NODE_TYPE = "TDM_Item_Order"
FIELD_CREATE_DATE = "CreateDate"
FIELD_PROCESS_STATUS = "ProcessStatusID"
FIELD_PROCESS_LOCK = "ProcessLockID"

STATUS_SCANNED = "psScanned"
LOCK_CHECKED_OUT = "plCheckedOut"


def find_first(nodes: Iterable[ET.Element], predicate: Callable[[ET.Element], bool]) -> Optional[ET.Element]:
    for node in nodes:
        if predicate(node):
            return node
    return None


def field_value(order_node: ET.Element, name: str) -> Optional[str]:
    """Value of the child named ``name``; ``value`` attribute first, then text."""
    child = find_first(order_node, lambda n: n.get("name") == name)
    if child is None:
        return None
    value = child.get("value")
    if value is None and child.text:
        value = child.text
    return value.strip() if value is not None else None


def parse_epoch(value: Optional[str]) -> datetime:
    if not value:
        return EPOCH_UTC
    try:
        return datetime.fromtimestamp(float(value), tz=timezone.utc)
    except (ValueError, OverflowError, OSError):
        return EPOCH_UTC


def parse_status_info(data: Union[str, bytes]) -> OrderStatusInfo:
    """Read lifecycle fields from descriptor XML. Bad input gives the defaults."""
    try:
        root = ET.fromstring(data)
    except (ET.ParseError, ValueError) as e:
        logger.debug(f"Descriptor is not valid XML: {e}")
        return OrderStatusInfo()

    order_node = find_first(root.iter(), lambda n: n.get("type") == ORDER_NODE_TYPE)
    if order_node is None:
        return OrderStatusInfo()

    return OrderStatusInfo(
        created_utc=parse_epoch(field_value(order_node, FIELD_CREATE_DATE)),
        is_scanned=field_value(order_node, FIELD_PROCESS_STATUS) == STATUS_SCANNED,
        is_locked=field_value(order_node, FIELD_PROCESS_LOCK) == LOCK_CHECKED_OUT,
    )


def read_status_info(descriptor_path: Path) -> OrderStatusInfo:
    try:
        data = Path(descriptor_path).read_bytes()
    except OSError as e:
        logger.debug(f"Cannot read descriptor {descriptor_path}: {e}")
        return OrderStatusInfo()
    return parse_status_info(data)
