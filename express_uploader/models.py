"""
Models for express uploader.

Immutable dataclasses for what the server and the order descriptor tell us,
plus the mutable per-run batch summary.
"""
import os
import re
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Any, Dict, List, Optional


EPOCH_UTC = datetime(1970, 1, 1, tzinfo=timezone.utc)

PRODUCTION_URL = "https://express.fullcontour.com"
TESTING_URL = "https://fcexpressfront-testing.azurewebsites.net"

FILE_SELECTION_NEGOTIATED = "negotiated"
FILE_SELECTION_LEGACY = "legacy"


class Severity(Enum):
    """How a user-facing message should be rendered."""
    INFO = "info"
    GOOD = "good"
    WARNING = "warning"
    ERROR = "error"


class ResultStatus(Enum):
    """Server-side design status of an uploaded order."""
    NEW = "new"  # ready for review, or reviewed but undecided
    IN_PROGRESS = "in_progress"
    ACCEPTED = "accepted"
    REJECTED = "rejected"
    FAILED = "failed"
    FORWARDED = "forwarded"
    UNKNOWN = "unknown"

    @classmethod
    def from_code(cls, code: Optional[int]) -> "ResultStatus":
        if code is None:
            return cls.UNKNOWN
        return _STATUS_CODES.get(code, cls.UNKNOWN)


_STATUS_CODES = {
    0: ResultStatus.NEW,
    3: ResultStatus.NEW,
    1: ResultStatus.ACCEPTED,
    2: ResultStatus.REJECTED,
    10: ResultStatus.IN_PROGRESS,
    -3: ResultStatus.FAILED,
    -2: ResultStatus.FAILED,
    -1: ResultStatus.FAILED,
    11: ResultStatus.FAILED,
    12: ResultStatus.FAILED,
    20: ResultStatus.FORWARDED,
    21: ResultStatus.FORWARDED,
    22: ResultStatus.FORWARDED,
    29: ResultStatus.FORWARDED,
}

_FRACTION_RE = re.compile(r"(\.\d{6})\d+")


def parse_utc(value: Any) -> Optional[datetime]:
    """Parse a server timestamp (ISO string, possibly with 'Z' or 7 digit fractions)."""
    if value in (None, ""):
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        text = _FRACTION_RE.sub(r"\1", text)
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def _lookup(data: Dict[str, Any], *names: str) -> Any:
    """Case-insensitive key lookup, first name that is present wins."""
    lowered = {str(k).lower(): v for k, v in data.items()}
    for name in names:
        if name.lower() in lowered:
            return lowered[name.lower()]
    return None


def _as_int(value: Any) -> Optional[int]:
    if value is None or isinstance(value, bool):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class OrderStatusInfo:
    """Lifecycle fields read from the order descriptor."""
    created_utc: datetime = EPOCH_UTC
    is_scanned: bool = False
    is_locked: bool = False


@dataclass(frozen=True)
class FilterOutcome:
    """Server classification of which order files are relevant."""
    kind: str
    order_path: str
    design_path: Optional[str] = None
    all_paths: List[str] = field(default_factory=list)

    @property
    def is_recognized(self) -> bool:
        return bool(self.kind)

    @property
    def order_file_name(self) -> str:
        return self.order_path.rsplit("/", 1)[-1]

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "FilterOutcome":
        paths = _lookup(data, "allPaths", "all_paths", "paths") or []
        return cls(
            kind=_lookup(data, "kind") or "",
            order_path=_lookup(data, "orderPath", "order_path") or "",
            design_path=_lookup(data, "designPath", "design_path") or None,
            all_paths=[str(p) for p in paths],
        )


@dataclass(frozen=True)
class UploadStatusRecord:
    """One earlier upload of an order, as reported by the server."""
    eid: str
    status: ResultStatus = ResultStatus.UNKNOWN
    status_code: Optional[int] = None
    created_utc: Optional[datetime] = None
    reviewed_utc: Optional[datetime] = None
    message: str = ""
    is_decided: bool = False
    is_failed: bool = False
    is_viewable: bool = False
    is_new: bool = False
    is_forwarded: bool = False

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> "UploadStatusRecord":
        code = _as_int(_lookup(data, "status", "statusCode"))
        status = ResultStatus.from_code(code)

        def flag(derived: bool, *names: str) -> bool:
            value = _lookup(data, *names)
            return derived if value is None else bool(value)

        return cls(
            eid=str(_lookup(data, "eid", "id") or ""),
            status=status,
            status_code=code,
            created_utc=parse_utc(_lookup(data, "createdUtc", "created_utc")),
            reviewed_utc=parse_utc(_lookup(data, "reviewedUtc", "reviewed_utc")),
            message=str(_lookup(data, "statusMessage", "message") or ""),
            is_decided=flag(
                status in (ResultStatus.ACCEPTED, ResultStatus.REJECTED), "isDecided", "decided"
            ),
            is_failed=flag(status == ResultStatus.FAILED, "isFailed", "failed"),
            is_viewable=flag(status == ResultStatus.NEW, "isViewable", "viewable"),
            is_new=flag(status == ResultStatus.NEW, "isNew", "new"),
            is_forwarded=flag(status == ResultStatus.FORWARDED, "isForwarded", "forwarded"),
        )


@dataclass(frozen=True)
class AuthCookie:
    """The session's authentication cookie, as kept by callers."""
    name: str
    value: str
    expires: Optional[datetime] = None
    domain: str = ""
    path: str = "/"

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        if self.expires is None:
            return False
        now = now or datetime.now(timezone.utc)
        return self.expires <= now

    def remaining(self, now: Optional[datetime] = None) -> Optional[timedelta]:
        if self.expires is None:
            return None
        now = now or datetime.now(timezone.utc)
        return self.expires - now


@dataclass
class BatchSummary:
    """Counters of one batch pass. Created fresh per scan."""
    in_directory: int = 0
    created_in_period: int = 0
    uploaded_before: int = 0
    not_qualified: int = 0
    qualified: int = 0
    selected: int = 0
    uploaded_now: int = 0
    failed: int = 0

    def describe(self) -> str:
        return (
            f"Orders created in period: {self.created_in_period};  "
            f"uploaded earlier: {self.uploaded_before};  "
            f"qualifying now: {self.qualified};  selected: {self.selected};  "
            f"uploaded now: {self.uploaded_now}"
        )


def _env_bool(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in {"1", "true", "yes", "on"}


@dataclass(frozen=True)
class UploaderConfig:
    """Immutable configuration for the uploader."""
    base_url: str = PRODUCTION_URL
    orders_root: Optional[str] = None
    lookback_hours: float = 24.0
    max_lookback_hours: float = 31 * 24 * 12 * 5
    reserved_dir_name: str = "ManufacturingDir"
    file_selection: str = FILE_SELECTION_NEGOTIATED
    login_safety_margin_minutes: int = 15
    timeout: float = 60.0

    def __post_init__(self):
        if self.file_selection not in (FILE_SELECTION_NEGOTIATED, FILE_SELECTION_LEGACY):
            raise ValueError(f"Unknown file selection strategy: {self.file_selection}")
        if self.lookback_hours < 0:
            raise ValueError(f"Lookback hours must not be negative: {self.lookback_hours}")

    @property
    def login_safety_margin(self) -> timedelta:
        return timedelta(minutes=self.login_safety_margin_minutes)

    def clamp_lookback(self, hours: float) -> float:
        """Validate a lookback window; too large values are clamped."""
        if hours < 0:
            raise ValueError(f"Lookback hours must not be negative: {hours}")
        return min(hours, self.max_lookback_hours)

    @classmethod
    def from_env(cls, environ: Optional[Dict[str, str]] = None) -> "UploaderConfig":
        env = os.environ if environ is None else environ
        defaults = cls()

        base_url = env.get("EXPRESS_BASE_URL")
        if not base_url:
            base_url = TESTING_URL if _env_bool(env.get("EXPRESS_USE_TESTING")) else PRODUCTION_URL

        lookback = defaults.lookback_hours
        if env.get("EXPRESS_LOOKBACK_HOURS"):
            lookback = float(env["EXPRESS_LOOKBACK_HOURS"])

        timeout = defaults.timeout
        if env.get("EXPRESS_TIMEOUT"):
            timeout = float(env["EXPRESS_TIMEOUT"])

        return cls(
            base_url=base_url.rstrip("/"),
            orders_root=env.get("EXPRESS_ORDERS_ROOT") or None,
            lookback_hours=lookback,
            file_selection=env.get("EXPRESS_FILE_SELECTION") or defaults.file_selection,
            timeout=timeout,
        )
