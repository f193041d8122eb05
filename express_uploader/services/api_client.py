"""HTTP client for the Express design service."""
from __future__ import annotations

import asyncio
import contextlib
import json
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, BinaryIO, Dict, Iterable, List, Optional
from urllib.parse import urlsplit

import httpx

from ..exceptions import ExpressAPIError, UploadCancelledError
from ..models import AuthCookie, FilterOutcome, UploadStatusRecord

logger = logging.getLogger(__name__)

AUTH_COOKIE_NAME = "autodontix"
DEFAULT_LOGIN_SAFETY_MARGIN = timedelta(minutes=15)

XSRF_PATH = "api/xsrf/get/"
PING_PATH = "Home/Ping"
LOGIN_PATH = "Home/LoginApi"
LOGOUT_PATH = "home/logout/"
STATUS_PATH = "api/Results/ForOrder"
FILTER_PATH = "api/Qualification/Filter"
QUALIFY_PATH = "api/Qualification/Qualify"
UPLOAD_PATH = "api/Streaming/Upload/"


def _error_detail(response: httpx.Response) -> str:
    try:
        return json.dumps(response.json())
    except Exception:
        return response.text


class ExpressClient:
    """
    Stateful session against the Express web API.

    Owns one cookie-aware ``httpx.AsyncClient`` plus the current
    anti-forgery token. Every state-changing request carries the token;
    it is refreshed before the first such request and right after login,
    since the server binds it to the user identity.

    Usage:
        async with ExpressClient(base_url) as client:
            if not await client.check_still_logged_in(stored_cookie):
                await client.login(email, password, remember=True)
            records = await client.get_status(order_id)
    """

    def __init__(
        self,
        base_url: str,
        timeout: float = 60,
        login_safety_margin: timedelta = DEFAULT_LOGIN_SAFETY_MARGIN,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = base_url.rstrip("/") + "/"
        self._host = urlsplit(self._base_url).hostname or ""
        self._timeout = timeout
        self._login_safety_margin = login_safety_margin
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None
        self._xsrf_header: Optional[str] = None

    async def __aenter__(self):
        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            timeout=self._timeout,
            transport=self._transport,
        )
        return self

    async def __aexit__(self, *args):
        if self._client:
            await self._client.aclose()
            self._client = None

    @property
    def base_url(self) -> str:
        return self._base_url.rstrip("/")

    @property
    def has_xsrf_token(self) -> bool:
        return self._xsrf_header is not None

    @property
    def auth_cookie(self) -> Optional[AuthCookie]:
        """The current authentication cookie, if the session holds one."""
        if not self._client:
            return None
        for cookie in self._client.cookies.jar:
            if cookie.name != AUTH_COOKIE_NAME:
                continue
            expires = None
            if cookie.expires is not None:
                expires = datetime.fromtimestamp(cookie.expires, tz=timezone.utc)
            return AuthCookie(
                name=cookie.name,
                value=cookie.value or "",
                expires=expires,
                domain=cookie.domain,
                path=cookie.path,
            )
        return None

    def inspect_url(self, eid: str) -> str:
        return f"{self.base_url}/Inspect/{eid}"

    def _require_client(self) -> httpx.AsyncClient:
        if not self._client:
            raise RuntimeError("ExpressClient not initialized. Use 'async with' context.")
        return self._client

    def _drop_auth_cookie(self) -> None:
        if self._client:
            self._client.cookies.delete(AUTH_COOKIE_NAME)

    def _drop_xsrf_token(self) -> None:
        if self._client and self._xsrf_header:
            self._client.headers.pop(self._xsrf_header, None)
        self._xsrf_header = None

    async def refresh_xsrf_token(self) -> None:
        """
        Fetch a fresh anti-forgery token and send it on all later requests.

        Raises:
            ExpressAPIError: Token endpoint failed or answered garbage
        """
        client = self._require_client()
        response = await client.get(XSRF_PATH)
        if not response.is_success:
            raise ExpressAPIError(
                f"Cannot get anti-forgery token [Error code {response.status_code}]",
                endpoint=XSRF_PATH,
                status_code=response.status_code,
                detail=_error_detail(response),
            )
        try:
            data = response.json()
            token = data["token"]
            token_name = data["tokenName"]
        except (ValueError, KeyError, TypeError) as e:
            raise ExpressAPIError(
                f"Malformed anti-forgery token response: {e}",
                endpoint=XSRF_PATH,
                status_code=response.status_code,
                detail=response.text,
            ) from e

        self._drop_xsrf_token()
        client.headers[token_name] = token
        self._xsrf_header = token_name

    async def check_still_logged_in(
        self,
        stored_cookie: Optional[AuthCookie],
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Whether a stored authentication cookie still gives a session.

        Never raises. On any failure the locally held cookie is dropped.
        """
        if stored_cookie is None:
            return False
        if stored_cookie.name != AUTH_COOKIE_NAME:
            return False

        now = now or datetime.now(timezone.utc)
        remaining = stored_cookie.remaining(now)
        if remaining is not None and remaining < self._login_safety_margin:
            logger.info("Stored login is expired or about to expire")
            return False

        try:
            client = self._require_client()
            client.cookies.set(
                stored_cookie.name,
                stored_cookie.value,
                domain=stored_cookie.domain or self._host,
                path=stored_cookie.path or "/",
            )
            # may be the first call of the session
            await self.refresh_xsrf_token()
            response = await client.get(PING_PATH)
            if response.is_success:
                return True
            logger.info(f"Stored login rejected by server [{response.status_code}]")
        except Exception as e:
            logger.debug(f"Login check failed: {e}")

        self._drop_auth_cookie()
        return False

    async def login(self, email: str, password: str, remember: bool) -> bool:
        """
        Log in with credentials. False when the server refuses.

        Raises:
            ExpressAPIError: Anti-forgery token could not be obtained
            httpx.HTTPError: Transport failure
        """
        client = self._require_client()
        await self.refresh_xsrf_token()

        response = await client.post(
            LOGIN_PATH,
            data={"email": email, "password": password, "remember": str(remember)},
        )
        if not response.is_success:
            logger.info(f"Login refused [{response.status_code}]")
            return False

        # token is bound to the now authenticated user
        await self.refresh_xsrf_token()
        logger.info(f"Logged in as {email}")
        return True

    async def logout(self) -> None:
        """Best effort; no anti-forgery token needed."""
        client = self._require_client()
        try:
            await client.get(LOGOUT_PATH)
        finally:
            self._drop_xsrf_token()
            self._drop_auth_cookie()

    async def get_status(self, order_id: str) -> List[UploadStatusRecord]:
        """
        Earlier uploads of an order. Empty list means never uploaded.

        Raises:
            ExpressAPIError: Status could not be determined
        """
        client = self._require_client()
        response = await client.post(STATUS_PATH, data={"orderName": order_id})
        if not response.is_success:
            raise ExpressAPIError(
                f"Cannot get status of {order_id} [Error code {response.status_code}]",
                endpoint=STATUS_PATH,
                status_code=response.status_code,
                detail=_error_detail(response),
            )
        if response.status_code == httpx.codes.NO_CONTENT or not response.content.strip():
            return []

        try:
            data = response.json()
            if not isinstance(data, list):
                raise ValueError("expected a list")
            return [UploadStatusRecord.from_json(item) for item in data]
        except (ValueError, TypeError, AttributeError) as e:
            raise ExpressAPIError(
                f"Malformed status response for {order_id}: {e}",
                endpoint=STATUS_PATH,
                status_code=response.status_code,
                detail=response.text,
            ) from e

    async def filter(self, all_paths: Iterable[str]) -> Optional[FilterOutcome]:
        """
        Let the server classify the order files.

        Returns None when the order is not recognized.

        Raises:
            ExpressAPIError: Server or transport level failure
        """
        client = self._require_client()
        paths = list(all_paths)
        response = await client.post(FILTER_PATH, files={"paths": (None, json.dumps(paths))})
        if not response.is_success:
            raise ExpressAPIError(
                f"Cannot filter order files [Error code {response.status_code}]",
                endpoint=FILTER_PATH,
                status_code=response.status_code,
                detail=_error_detail(response),
            )
        if response.status_code == httpx.codes.NO_CONTENT or not response.content.strip():
            return None

        try:
            data = response.json()
        except ValueError as e:
            raise ExpressAPIError(
                f"Malformed filter response: {e}",
                endpoint=FILTER_PATH,
                status_code=response.status_code,
                detail=response.text,
            ) from e
        if not isinstance(data, dict):
            return None

        outcome = FilterOutcome.from_json(data)
        return outcome if outcome.is_recognized else None

    async def qualify(
        self,
        outcome: FilterOutcome,
        order_file: BinaryIO,
        design_file: Optional[BinaryIO] = None,
    ) -> str:
        """
        Ask whether the order can be designed.

        Returns an empty string if it qualifies, otherwise the reason why not.

        Raises:
            ExpressAPIError: Server or transport level failure
        """
        client = self._require_client()
        form = {
            "paths": json.dumps(list(outcome.all_paths)),
            "orderFileName": outcome.order_file_name,
        }
        files: Dict[str, Any] = {"orderFile": (outcome.order_file_name, order_file, "text/xml")}
        if design_file is not None and outcome.design_path:
            design_name = outcome.design_path.rsplit("/", 1)[-1]
            files["designFile"] = (design_name, design_file, "application/octet-stream")

        response = await client.post(QUALIFY_PATH, data=form, files=files)
        if not response.is_success:
            raise ExpressAPIError(
                f"Could not qualify order [Error code {response.status_code}]",
                endpoint=QUALIFY_PATH,
                status_code=response.status_code,
                detail=_error_detail(response),
            )
        return response.text.strip()

    async def upload(
        self,
        archive_name: str,
        archive: BinaryIO,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> None:
        """
        Stream an order archive to the server.

        Raises:
            UploadCancelledError: ``cancel_event`` fired before the upload finished
            ExpressAPIError: Server rejected the upload
        """
        client = self._require_client()
        if cancel_event is not None and cancel_event.is_set():
            raise UploadCancelledError(archive_name)

        files = {"file": (archive_name, archive, "application/zip")}
        send = asyncio.create_task(client.post(UPLOAD_PATH, files=files))
        waiter = asyncio.create_task(cancel_event.wait()) if cancel_event is not None else None
        try:
            pending = {send} if waiter is None else {send, waiter}
            done, _ = await asyncio.wait(pending, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if waiter is not None:
                waiter.cancel()
            if not send.done():
                send.cancel()
                with contextlib.suppress(asyncio.CancelledError, httpx.HTTPError):
                    await send

        if send not in done:
            logger.info(f"Upload of {archive_name} cancelled")
            raise UploadCancelledError(archive_name)

        response = send.result()
        if not response.is_success:
            raise ExpressAPIError(
                f"Could not upload order [Error code {response.status_code}]",
                endpoint=UPLOAD_PATH,
                status_code=response.status_code,
                detail=_error_detail(response),
            )
        logger.info(f"Uploaded {archive_name}")
