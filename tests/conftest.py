"""Shared fixtures: order directories on disk and a mocked service client."""
from datetime import datetime, timezone
from pathlib import Path
from unittest.mock import AsyncMock, Mock

import pytest

from express_uploader.models import FilterOutcome

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)

DESCRIPTOR_TEMPLATE = """<?xml version="1.0" encoding="utf-8"?>
<DentalContainer>
  <Object name="OrderList" type="TDM_List_Order">
    <Object type="TDM_Item_Order">
      <Property name="OrderID" value="{order_id}"/>
      <Property name="CreateDate" value="{created}"/>
      <Property name="ProcessStatusID" value="{status}"/>
      <Property name="ProcessLockID" value="{lock}"/>
    </Object>
  </Object>
</DentalContainer>
"""

DEFAULT_FILES = {
    "PreparationScan.dcm": b"prep scan",
    "AntagonistScan.dcm": b"antagonist scan",
    "Materials.xml": b"<Materials/>",
    "Notes/readme.txt": b"not needed",
}


def write_order(
    root: Path,
    order_id: str,
    created: datetime = NOW,
    scanned: bool = True,
    locked: bool = False,
    files=None,
) -> Path:
    order_dir = root / order_id
    order_dir.mkdir(parents=True)
    (order_dir / f"{order_id}.xml").write_text(
        DESCRIPTOR_TEMPLATE.format(
            order_id=order_id,
            created=int(created.timestamp()),
            status="psScanned" if scanned else "psCreated",
            lock="plCheckedOut" if locked else "plReady",
        ),
        encoding="utf-8",
    )
    for name, content in (DEFAULT_FILES if files is None else files).items():
        path = order_dir / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(content)
    return order_dir


@pytest.fixture
def now():
    return NOW


@pytest.fixture
def make_order(tmp_path):
    root = tmp_path / "orders"
    root.mkdir()

    def _make(order_id: str, **kwargs) -> Path:
        return write_order(root, order_id, **kwargs)

    _make.root = root
    return _make


async def _recognize_all(paths):
    paths = list(paths)
    order_id = paths[0].split("/", 1)[0]
    return FilterOutcome(
        kind="crown",
        order_path=f"{order_id}/{order_id}.xml",
        all_paths=paths,
    )


@pytest.fixture
def mock_client():
    """Client that finds no earlier uploads, recognizes every order and qualifies it."""
    client = Mock()
    client.uploaded = {}

    async def _upload(archive_name, archive, cancel_event=None):
        client.uploaded[archive_name] = archive.read()

    client.inspect_url = Mock(side_effect=lambda eid: f"https://express.test/Inspect/{eid}")
    client.get_status = AsyncMock(return_value=[])
    client.filter = AsyncMock(side_effect=_recognize_all)
    client.qualify = AsyncMock(return_value="")
    client.upload = AsyncMock(side_effect=_upload)
    return client
