"""
Local file selection rule.

Used only when the deployment is configured for legacy selection instead of
server filter negotiation. Both raw and non-raw intraoral scans are sent if
they exist; the back end decides which to use.
"""
from typing import Iterable, List

REQUIRED_SUFFIXES = (
    "preparationscan.dcm",
    "antagonistscan.dcm",
    "raw preparation scan.dcm",
    "raw antagonist scan.dcm",
    "materials.xml",
    "manufacturers.3ml",
    "dentaldesignermodellingtree.3ml",
)

BACKUP_SEGMENT = "backup"
MACOS_RESOURCE_MARKER = "__macosx"


def is_required_file(path: str) -> bool:
    """Whether a (non-descriptor) order file belongs in a legacy upload."""
    normalized = path.replace("\\", "/")
    if not normalized or normalized.endswith("/"):
        return False

    lowered = normalized.lower()
    if MACOS_RESOURCE_MARKER in lowered:
        return False
    if BACKUP_SEGMENT in lowered.split("/")[:-1]:
        return False

    return lowered.endswith(REQUIRED_SUFFIXES)


def select_required_paths(paths: Iterable[str]) -> List[str]:
    return [p for p in paths if is_required_file(p)]
