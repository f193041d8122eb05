"""
Order Handler - read-only access to one order directory.

An order is a directory whose name is the order id and which contains
``<order id>.xml`` directly inside it. Nothing here ever writes to the order
directory; the acquisition tool may still be touching sibling files.
"""
import io
import logging
import shutil
import zipfile
from pathlib import Path, PurePosixPath
from typing import BinaryIO, Iterable, Iterator, List, Optional

from ..exceptions import ArchiveBuildError, InvalidOrderError
from ..models import FilterOutcome, OrderStatusInfo
from .descriptor import read_status_info
from .file_filter import select_required_paths

logger = logging.getLogger(__name__)

LEGACY_FILTER_KIND = "legacy"


def normalize_relative_path(path: str) -> str:
    """Archive convention: forward slashes, no leading slash."""
    return path.replace("\\", "/").strip("/")


class OrderHandler:
    """
    Answers questions about one order directory and builds its upload payload.

    Usage:
        handler = OrderHandler.make_if_valid(path)
        if handler is None:
            ...  # not an order, skip silently
        info = handler.status_info()
        archive = handler.build_archive(handler.all_relative_paths())
    """

    def __init__(self, order_dir: Path):
        """
        Args:
            order_dir: Directory containing the order

        Raises:
            InvalidOrderError: Directory or descriptor missing
        """
        self._dir = Path(order_dir).absolute()
        if not self._dir.is_dir():
            raise InvalidOrderError(f"Order directory '{order_dir}' does not exist")

        self._descriptor = self._dir / f"{self._dir.name}.xml"
        if not self._descriptor.is_file():
            raise InvalidOrderError(f"No order in order directory '{order_dir}'")

        self._status_info: Optional[OrderStatusInfo] = None
        self._descriptor_text: Optional[str] = None

    @classmethod
    def make_if_valid(cls, order_dir: Path) -> Optional["OrderHandler"]:
        """Handler for ``order_dir``, or None if it is not an order."""
        try:
            return cls(order_dir)
        except InvalidOrderError:
            return None
        except OSError as e:
            logger.debug(f"Cannot inspect {order_dir}: {e}")
            return None

    @property
    def order_id(self) -> str:
        return self._dir.name

    @property
    def directory(self) -> Path:
        return self._dir

    @property
    def descriptor_path(self) -> Path:
        return self._descriptor

    @property
    def descriptor_relative_path(self) -> str:
        return f"{self.order_id}/{self._descriptor.name}"

    def status_info(self) -> OrderStatusInfo:
        """Creation time, scanned and locked flags. Parsed once; never raises."""
        if self._status_info is None:
            self._status_info = read_status_info(self._descriptor)
        return self._status_info

    def read_descriptor_text(self) -> str:
        if self._descriptor_text is None:
            self._descriptor_text = self._descriptor.read_text(encoding="utf-8", errors="replace")
        return self._descriptor_text

    def iter_relative_paths(self) -> Iterator[str]:
        """
        Every file under the order, relative to the order's parent directory.

        The order id is the first segment. Enumerated afresh on every call.
        """
        parent = self._dir.parent
        for item in sorted(self._dir.rglob("*")):
            if item.is_file():
                yield item.relative_to(parent).as_posix()

    def all_relative_paths(self) -> List[str]:
        return list(self.iter_relative_paths())

    def resolve(self, relative_path: str) -> Optional[Path]:
        """Absolute path for a relative order path, None if it leaves the order."""
        normalized = normalize_relative_path(relative_path or "")
        if not normalized:
            return None
        parts = PurePosixPath(normalized).parts
        if parts[0] != self.order_id or ".." in parts:
            return None
        return self._dir.parent.joinpath(*parts)

    def open_file(self, relative_path: Optional[str]) -> Optional[BinaryIO]:
        """
        Open an order file for reading.

        Returns None for empty input or a missing file; optional design files
        are often absent. Caller closes the stream.
        """
        if not relative_path:
            return None
        path = self.resolve(relative_path)
        if path is None or not path.is_file():
            return None
        try:
            return open(path, "rb")
        except OSError as e:
            logger.warning(f"[{self.order_id}] Cannot open {relative_path}: {e}")
            return None

    def build_archive(self, relative_paths: Iterable[str]) -> io.BytesIO:
        """
        Zip exactly the given files, keeping their relative paths.

        Any file that cannot be read fails the whole archive. The returned
        stream is positioned at 0; caller owns it.

        Raises:
            ArchiveBuildError: A listed file is missing or unreadable
        """
        names: List[str] = []
        for rel in relative_paths:
            normalized = normalize_relative_path(rel)
            if normalized and normalized not in names:
                names.append(normalized)

        buffer = io.BytesIO()
        try:
            with zipfile.ZipFile(buffer, "w", compression=zipfile.ZIP_DEFLATED) as archive:
                for name in names:
                    path = self.resolve(name)
                    if path is None:
                        raise ArchiveBuildError(f"Path is not inside order {self.order_id}: {name}", name)
                    try:
                        info = zipfile.ZipInfo.from_file(path, arcname=name, strict_timestamps=False)
                        info.compress_type = zipfile.ZIP_DEFLATED
                        with open(path, "rb") as source, archive.open(info, "w") as target:
                            shutil.copyfileobj(source, target)
                    except OSError as e:
                        raise ArchiveBuildError(f"Cannot add {name} to archive: {e}", name) from e
        except ArchiveBuildError:
            buffer.close()
            raise

        buffer.seek(0)
        logger.debug(f"[{self.order_id}] Archive built: {len(names)} file(s), {buffer.getbuffer().nbytes} bytes")
        return buffer

    def required_relative_paths(self) -> List[str]:
        """Files selected by the local suffix rule, descriptor first."""
        return [self.descriptor_relative_path] + select_required_paths(self.iter_relative_paths())

    def legacy_filter_outcome(self) -> FilterOutcome:
        """Local stand-in for server filter negotiation."""
        return FilterOutcome(
            kind=LEGACY_FILTER_KIND,
            order_path=self.descriptor_relative_path,
            design_path=None,
            all_paths=self.required_relative_paths(),
        )
