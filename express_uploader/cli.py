"""Command line interface for express_uploader package."""
from __future__ import annotations

import argparse
import asyncio
import dataclasses
import getpass
import logging
import os
import signal
import sys
from pathlib import Path
from typing import Callable, Mapping, Optional, Sequence

import httpx
from rich.logging import RichHandler

from . import __version__
from .cli_progress import (
    BatchProgressDisplay,
    render_configuration_summary,
    render_message,
    render_single_result,
)
from .exceptions import ExpressError
from .models import (
    FILE_SELECTION_LEGACY,
    TESTING_URL,
    AuthCookie,
    Severity,
    UploaderConfig,
    parse_utc,
)
from .orchestrator import BatchOrchestrator, BatchUploadProcess, SingleOrderHandler
from .services.api_client import AUTH_COOKIE_NAME, ExpressClient

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_ERROR = 1
EXIT_CANCELLED = 130


class CLIError(RuntimeError):
    """Raised when CLI validation/execution fails."""


def _setup_logging(debug: bool, silent: bool, log_level: Optional[str]) -> str:
    """
    Configure logging.

    Default behavior is silent unless --debug, --log-level or LOG_LEVEL is
    provided. Returns a string describing effective mode.
    """
    root_logger = logging.getLogger()
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)

    logging.disable(logging.NOTSET)

    env_level = os.getenv("LOG_LEVEL")
    if silent or (not debug and not log_level and not env_level):
        logging.disable(logging.CRITICAL)
        root_logger.setLevel(logging.CRITICAL + 1)
        return "silent"

    if debug:
        level = logging.DEBUG
    else:
        level = getattr(logging, (log_level or env_level or "INFO").upper(), logging.INFO)

    handler = RichHandler(
        rich_tracebacks=True,
        markup=False,
        show_time=False,
        show_path=False,
    )
    handler.setFormatter(logging.Formatter("%(message)s"))
    root_logger.addHandler(handler)
    root_logger.setLevel(level)
    # request lines from httpx only in debug mode
    logging.getLogger("httpx").setLevel(logging.DEBUG if debug else logging.WARNING)
    return logging.getLevelName(level)


def _strip_optional_quotes(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {"'", '"'}:
        return value[1:-1]
    return value


def _strip_trailing_quote(value: str) -> str:
    """The host application passes ``C:\\Orders\\X\\"`` for paths ending in a backslash."""
    value = value.strip()
    if value.endswith('"'):
        value = value[:-1]
    return value


def _load_env_file(path: Path, override: bool = False) -> None:
    if not path.exists():
        raise CLIError(f"env file not found: {path}")
    if not path.is_file():
        raise CLIError(f"env path is not a file: {path}")

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise CLIError(f"could not read env file {path}: {exc}") from exc

    for raw_line in content.splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if line.startswith("export "):
            line = line[len("export ") :].strip()
        if "=" not in line:
            continue

        key, value = line.split("=", 1)
        key = key.strip()
        if not key:
            continue

        value = _strip_optional_quotes(value.strip())
        if override or key not in os.environ:
            os.environ[key] = value


def _resolve_default_env_file() -> Optional[Path]:
    default_env = Path(".env")
    return default_env if default_env.exists() and default_env.is_file() else None


def _stored_auth_cookie(env: Mapping[str, str]) -> Optional[AuthCookie]:
    value = env.get("EXPRESS_AUTH_COOKIE")
    if not value:
        return None
    return AuthCookie(
        name=AUTH_COOKIE_NAME,
        value=value,
        expires=parse_utc(env.get("EXPRESS_AUTH_COOKIE_EXPIRES")),
    )


async def _ensure_logged_in(
    client: ExpressClient,
    env: Mapping[str, str],
    ask: Callable[[str], str] = input,
    ask_secret: Callable[[str], str] = getpass.getpass,
) -> None:
    """Reuse a stored login if it still works, otherwise log in with credentials."""
    if await client.check_still_logged_in(_stored_auth_cookie(env)):
        logger.info("Reusing stored login")
        return

    email = env.get("EXPRESS_EMAIL") or ask("Email: ")
    password = env.get("EXPRESS_PASSWORD") or ask_secret("Password: ")
    if not email or not password:
        raise CLIError("email and password are required to log in")

    if not await client.login(email, password, remember=True):
        raise CLIError("login refused by the server, check email and password")


async def _run_single(client: ExpressClient, config: UploaderConfig, order_dir: Path, auto_upload: bool) -> int:
    handler = SingleOrderHandler(client, config)
    result = await handler.handle(order_dir, auto_upload=auto_upload)
    render_single_result(result)
    if result.cancelled:
        return EXIT_CANCELLED
    return EXIT_OK if result.success else EXIT_ERROR


async def _run_batch(
    client: ExpressClient,
    config: UploaderConfig,
    root: Path,
    lookback_hours: Optional[float],
) -> int:
    display = BatchProgressDisplay()
    orchestrator = BatchOrchestrator(client, config)
    process = BatchUploadProcess(orchestrator, root, lookback_hours=lookback_hours)
    process.on_order_examined(display.on_order_examined)
    process.on_order_skipped(display.on_order_skipped)
    process.on_order_selected(display.on_order_selected)
    process.on_order_failed(display.on_order_failed)
    process.on_upload_start(display.on_upload_start)
    process.on_upload_complete(display.on_upload_complete)
    process.on_upload_cancelled(display.on_upload_cancelled)
    process.on_summary(display.on_summary)
    process.on_finish(display.on_finish)
    process.on_error(display.on_error)

    loop = asyncio.get_running_loop()
    handles_sigint = True
    try:
        loop.add_signal_handler(signal.SIGINT, process.cancel)
    except (NotImplementedError, RuntimeError):
        handles_sigint = False

    try:
        result = await process.wait()
    finally:
        if handles_sigint:
            loop.remove_signal_handler(signal.SIGINT)

    if result.error:
        return EXIT_ERROR
    if result.cancelled:
        return EXIT_CANCELLED
    return EXIT_OK if result.success else EXIT_ERROR


async def _run(
    config: UploaderConfig,
    order_dir: Optional[Path],
    root: Optional[Path],
    lookback_hours: Optional[float],
    auto_upload: bool,
    logout: bool,
) -> int:
    async with ExpressClient(
        config.base_url,
        timeout=config.timeout,
        login_safety_margin=config.login_safety_margin,
    ) as client:
        await _ensure_logged_in(client, os.environ)
        try:
            if order_dir is not None:
                return await _run_single(client, config, order_dir, auto_upload)
            return await _run_batch(client, config, root, lookback_hours)
        finally:
            if logout:
                await client.logout()


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="express-up",
        description=(
            "Check, qualify and upload dental scan orders to the Express design service. "
            "With ORDER_DIR one order is handled, otherwise all recent orders under the orders root."
        ),
    )
    parser.add_argument("order_dir", nargs="?", default=None, help="Order directory (single-order mode)")
    parser.add_argument(
        "-r",
        "--root",
        type=Path,
        default=None,
        help="Orders root directory for batch mode (default from EXPRESS_ORDERS_ROOT)",
    )
    parser.add_argument(
        "-H",
        "--hours",
        type=float,
        default=None,
        help="Only orders created within this many hours (default from EXPRESS_LOOKBACK_HOURS or 24)",
    )
    parser.add_argument(
        "-a",
        "--auto-upload",
        action="store_true",
        help="Upload a new qualifying order in single-order mode",
    )
    target = parser.add_mutually_exclusive_group()
    target.add_argument("--base-url", default=None, help="Service base URL (default from EXPRESS_BASE_URL)")
    target.add_argument("--testing", action="store_true", help="Use the testing service")
    parser.add_argument(
        "--legacy-filter",
        action="store_true",
        help="Select files with the local suffix rule instead of asking the server",
    )
    parser.add_argument("--logout", action="store_true", help="End the server session when done")
    parser.add_argument(
        "--env-file",
        type=Path,
        default=None,
        help="Load environment variables from this .env file",
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logs")
    parser.add_argument("--silent", action="store_true", help="Only print errors")
    parser.add_argument(
        "--log-level",
        default=None,
        help="Explicit log level (DEBUG/INFO/WARNING/ERROR)",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"express-up {__version__}",
    )
    return parser


def _build_config(args: argparse.Namespace) -> UploaderConfig:
    try:
        config = UploaderConfig.from_env()
    except ValueError as exc:
        raise CLIError(f"invalid configuration: {exc}") from exc

    overrides = {}
    if args.base_url:
        overrides["base_url"] = args.base_url.rstrip("/")
    elif args.testing:
        overrides["base_url"] = TESTING_URL
    if args.legacy_filter:
        overrides["file_selection"] = FILE_SELECTION_LEGACY
    if args.root is not None:
        overrides["orders_root"] = str(args.root)
    return dataclasses.replace(config, **overrides) if overrides else config


def run_cli(argv: Optional[Sequence[str]] = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(argv)

    used_env_file = args.env_file or _resolve_default_env_file()
    if used_env_file is not None:
        try:
            _load_env_file(Path(used_env_file))
        except CLIError as exc:
            print(f"ERROR: {exc}", file=sys.stderr)
            return EXIT_ERROR

    effective_log_mode = _setup_logging(
        debug=args.debug,
        silent=args.silent,
        log_level=args.log_level,
    )

    try:
        config = _build_config(args)
    except CLIError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return EXIT_ERROR

    order_dir = None
    root = None
    if args.order_dir:
        order_dir = Path(_strip_trailing_quote(args.order_dir)).expanduser()
    else:
        if not config.orders_root:
            parser.print_help()
            return EXIT_OK
        root = Path(config.orders_root).expanduser()
        if not root.is_dir():
            print(f"ERROR: orders root does not exist: {root}", file=sys.stderr)
            return EXIT_ERROR

    lookback_hours = args.hours
    if lookback_hours is not None and lookback_hours < 0:
        print(f"ERROR: --hours must not be negative: {lookback_hours}", file=sys.stderr)
        return EXIT_ERROR

    render_configuration_summary(
        {
            "Mode": "single order" if order_dir is not None else "batch",
            "Order": str(order_dir) if order_dir is not None else None,
            "Orders Root": str(root) if root is not None else None,
            "Lookback (h)": (
                config.clamp_lookback(lookback_hours if lookback_hours is not None else config.lookback_hours)
                if root is not None
                else None
            ),
            "Auto Upload": "yes" if args.auto_upload else "no",
            "Service": config.base_url,
            "File Selection": config.file_selection,
            "Env File": str(used_env_file) if used_env_file else None,
            "Logging": effective_log_mode,
        }
    )

    try:
        return asyncio.run(
            _run(
                config,
                order_dir=order_dir,
                root=root,
                lookback_hours=lookback_hours,
                auto_upload=args.auto_upload,
                logout=args.logout,
            )
        )
    except CLIError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        return EXIT_ERROR
    except (ExpressError, httpx.HTTPError) as exc:
        render_message(f"Error: {exc}", Severity.ERROR)
        return EXIT_ERROR
    except KeyboardInterrupt:
        print("Cancelled.", file=sys.stderr)
        return EXIT_CANCELLED


def main() -> None:
    raise SystemExit(run_cli())


if __name__ == "__main__":
    main()
