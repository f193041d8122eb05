"""Protocol tests for ExpressClient against an in-process fake service."""
import asyncio
import io
import json
from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs

import httpx
import pytest

from express_uploader.exceptions import ExpressAPIError, UploadCancelledError
from express_uploader.models import AuthCookie, FilterOutcome, ResultStatus
from express_uploader.services.api_client import AUTH_COOKIE_NAME, STATUS_PATH, ExpressClient

BASE_URL = "https://express.test"
TOKEN_HEADER = "X-XSRF-TOKEN"


class FakeExpress:
    """Records requests and answers per path; unknown paths get 404."""

    def __init__(self):
        self.requests = []
        self.token_count = 0
        self.routes = {"/api/xsrf/get/": self._xsrf}

    def _xsrf(self, request):
        self.token_count += 1
        return httpx.Response(200, json={"token": f"t{self.token_count}", "tokenName": TOKEN_HEADER})

    def route(self, path, response):
        self.routes[path] = response if callable(response) else (lambda request: response)

    def paths(self):
        return [r.url.path for r in self.requests]

    async def __call__(self, request):
        self.requests.append(request)
        handler = self.routes.get(request.url.path)
        if handler is None:
            return httpx.Response(404)
        result = handler(request)
        if asyncio.iscoroutine(result):
            result = await result
        return result


def form_of(request):
    return {k: v[0] for k, v in parse_qs(request.content.decode()).items()}


@pytest.fixture
def server():
    return FakeExpress()


@pytest.fixture
def make_client(server):
    def _make(**kwargs):
        return ExpressClient(BASE_URL, transport=httpx.MockTransport(server), **kwargs)

    return _make


class TestAntiForgeryToken:
    @pytest.mark.asyncio
    async def test_token_sent_on_later_requests(self, server, make_client):
        server.route("/api/Results/ForOrder", httpx.Response(204))
        async with make_client() as client:
            assert client.has_xsrf_token is False
            await client.refresh_xsrf_token()
            await client.get_status("A")

        assert client.has_xsrf_token is True
        assert server.requests[-1].headers[TOKEN_HEADER] == "t1"

    @pytest.mark.asyncio
    async def test_token_failure_raises(self, server, make_client):
        server.route("/api/xsrf/get/", httpx.Response(500, text="boom"))
        async with make_client() as client:
            with pytest.raises(ExpressAPIError) as exc_info:
                await client.refresh_xsrf_token()
        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_malformed_token_raises(self, server, make_client):
        server.route("/api/xsrf/get/", httpx.Response(200, json={"nope": 1}))
        async with make_client() as client:
            with pytest.raises(ExpressAPIError, match="Malformed"):
                await client.refresh_xsrf_token()

    @pytest.mark.asyncio
    async def test_requires_context(self):
        client = ExpressClient(BASE_URL)
        with pytest.raises(RuntimeError):
            await client.refresh_xsrf_token()


class TestLogin:
    @pytest.mark.asyncio
    async def test_login_refreshes_token_twice(self, server, make_client):
        server.route(
            "/Home/LoginApi",
            httpx.Response(200, headers={"set-cookie": f"{AUTH_COOKIE_NAME}=abc; Path=/"}),
        )
        async with make_client() as client:
            assert await client.login("doc@example.com", "secret", remember=True) is True
            cookie = client.auth_cookie
            await client.refresh_xsrf_token()

        assert server.paths()[:3] == ["/api/xsrf/get/", "/Home/LoginApi", "/api/xsrf/get/"]
        login_request = server.requests[1]
        assert login_request.headers[TOKEN_HEADER] == "t1"
        assert form_of(login_request) == {"email": "doc@example.com", "password": "secret", "remember": "True"}
        assert cookie is not None
        assert cookie.value == "abc"
        # token after login is the post-login one
        assert server.requests[-1].headers[TOKEN_HEADER] == "t2"

    @pytest.mark.asyncio
    async def test_login_refused(self, server, make_client):
        server.route("/Home/LoginApi", httpx.Response(401))
        async with make_client() as client:
            assert await client.login("doc@example.com", "wrong", remember=False) is False
        assert server.token_count == 1

    @pytest.mark.asyncio
    async def test_logout_drops_session(self, server, make_client):
        server.route(
            "/Home/LoginApi",
            httpx.Response(200, headers={"set-cookie": f"{AUTH_COOKIE_NAME}=abc; Path=/"}),
        )
        server.route("/home/logout/", httpx.Response(200))
        async with make_client() as client:
            await client.login("doc@example.com", "secret", remember=False)
            await client.logout()
            assert client.has_xsrf_token is False
            assert client.auth_cookie is None
        assert server.paths()[-1] == "/home/logout/"


class TestCheckStillLoggedIn:
    NOW = datetime(2024, 5, 1, 12, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_no_cookie(self, server, make_client):
        async with make_client() as client:
            assert await client.check_still_logged_in(None) is False
        assert server.requests == []

    @pytest.mark.asyncio
    async def test_expiring_within_margin(self, server, make_client):
        cookie = AuthCookie(name=AUTH_COOKIE_NAME, value="abc", expires=self.NOW + timedelta(minutes=10))
        async with make_client() as client:
            assert await client.check_still_logged_in(cookie, now=self.NOW) is False
        assert server.requests == []

    @pytest.mark.asyncio
    async def test_valid_cookie_pings(self, server, make_client):
        server.route("/Home/Ping", httpx.Response(200))
        cookie = AuthCookie(name=AUTH_COOKIE_NAME, value="abc", expires=self.NOW + timedelta(days=1))
        async with make_client() as client:
            assert await client.check_still_logged_in(cookie, now=self.NOW) is True
            assert client.auth_cookie.value == "abc"

        ping = server.requests[-1]
        assert ping.url.path == "/Home/Ping"
        assert f"{AUTH_COOKIE_NAME}=abc" in ping.headers["cookie"]
        assert ping.headers[TOKEN_HEADER] == "t1"

    @pytest.mark.asyncio
    async def test_rejected_ping_drops_cookie(self, server, make_client):
        server.route("/Home/Ping", httpx.Response(401))
        cookie = AuthCookie(name=AUTH_COOKIE_NAME, value="abc")
        async with make_client() as client:
            assert await client.check_still_logged_in(cookie, now=self.NOW) is False
            assert client.auth_cookie is None

    @pytest.mark.asyncio
    async def test_transport_error_never_raises(self, server, make_client):
        def explode(request):
            raise httpx.ConnectError("offline", request=request)

        server.route("/api/xsrf/get/", explode)
        cookie = AuthCookie(name=AUTH_COOKIE_NAME, value="abc")
        async with make_client() as client:
            assert await client.check_still_logged_in(cookie, now=self.NOW) is False


class TestGetStatus:
    @pytest.mark.asyncio
    async def test_no_content_means_never_uploaded(self, server, make_client):
        server.route("/api/Results/ForOrder", httpx.Response(204))
        async with make_client() as client:
            assert await client.get_status("A") == []
        assert form_of(server.requests[-1]) == {"orderName": "A"}

    @pytest.mark.asyncio
    async def test_records(self, server, make_client):
        server.route(
            "/api/Results/ForOrder",
            httpx.Response(200, json=[{"eid": "e1", "status": 0}, {"eid": "e2", "status": 12}]),
        )
        async with make_client() as client:
            records = await client.get_status("A")
        assert [r.eid for r in records] == ["e1", "e2"]
        assert records[0].status == ResultStatus.NEW
        assert records[1].is_failed is True

    @pytest.mark.asyncio
    async def test_server_error_raises(self, server, make_client):
        server.route("/api/Results/ForOrder", httpx.Response(500, json={"error": "db down"}))
        async with make_client() as client:
            with pytest.raises(ExpressAPIError) as exc_info:
                await client.get_status("A")
        assert exc_info.value.endpoint == STATUS_PATH
        assert "db down" in exc_info.value.detail

    @pytest.mark.asyncio
    async def test_malformed_body_raises(self, server, make_client):
        server.route("/api/Results/ForOrder", httpx.Response(200, json={"eid": "e1"}))
        async with make_client() as client:
            with pytest.raises(ExpressAPIError, match="Malformed"):
                await client.get_status("A")


class TestFilter:
    @pytest.mark.asyncio
    async def test_recognized(self, server, make_client):
        server.route(
            "/api/Qualification/Filter",
            httpx.Response(
                200,
                json={"kind": "crown", "orderPath": "A/A.xml", "allPaths": ["A/A.xml", "A/PreparationScan.dcm"]},
            ),
        )
        async with make_client() as client:
            outcome = await client.filter(iter(["A/A.xml", "A/PreparationScan.dcm", "A/x.txt"]))

        assert outcome.kind == "crown"
        assert outcome.all_paths == ["A/A.xml", "A/PreparationScan.dcm"]
        body = server.requests[-1].content
        assert b'name="paths"' in body
        assert json.dumps(["A/A.xml", "A/PreparationScan.dcm", "A/x.txt"]).encode() in body

    @pytest.mark.asyncio
    @pytest.mark.parametrize(
        "response",
        [httpx.Response(204), httpx.Response(200, json={"kind": "", "orderPath": "A/A.xml"})],
    )
    async def test_not_recognized(self, server, make_client, response):
        server.route("/api/Qualification/Filter", response)
        async with make_client() as client:
            assert await client.filter(["A/A.xml"]) is None

    @pytest.mark.asyncio
    async def test_server_error_raises(self, server, make_client):
        server.route("/api/Qualification/Filter", httpx.Response(502))
        async with make_client() as client:
            with pytest.raises(ExpressAPIError):
                await client.filter(["A/A.xml"])


class TestQualify:
    OUTCOME = FilterOutcome(
        kind="crown",
        order_path="A/A.xml",
        design_path="A/design.3ml",
        all_paths=["A/A.xml", "A/design.3ml"],
    )

    @pytest.mark.asyncio
    async def test_qualifies_with_design_file(self, server, make_client):
        server.route("/api/Qualification/Qualify", httpx.Response(200, text=""))
        async with make_client() as client:
            reason = await client.qualify(self.OUTCOME, io.BytesIO(b"<order/>"), io.BytesIO(b"design"))

        assert reason == ""
        body = server.requests[-1].content
        assert b'name="orderFileName"' in body
        assert b'filename="A.xml"' in body
        assert b'filename="design.3ml"' in body
        assert b"<order/>" in body

    @pytest.mark.asyncio
    async def test_reason(self, server, make_client):
        server.route("/api/Qualification/Qualify", httpx.Response(200, text="Missing antagonist scan\n"))
        async with make_client() as client:
            reason = await client.qualify(self.OUTCOME, io.BytesIO(b"<order/>"))
        assert reason == "Missing antagonist scan"
        assert b'name="designFile"' not in server.requests[-1].content

    @pytest.mark.asyncio
    async def test_server_error_raises(self, server, make_client):
        server.route("/api/Qualification/Qualify", httpx.Response(500))
        async with make_client() as client:
            with pytest.raises(ExpressAPIError, match="Could not qualify"):
                await client.qualify(self.OUTCOME, io.BytesIO(b"<order/>"))


class TestUpload:
    @pytest.mark.asyncio
    async def test_upload(self, server, make_client):
        server.route("/api/Streaming/Upload/", httpx.Response(200))
        async with make_client() as client:
            await client.upload("A.zip", io.BytesIO(b"PK-archive"))

        body = server.requests[-1].content
        assert b'filename="A.zip"' in body
        assert b"PK-archive" in body

    @pytest.mark.asyncio
    async def test_rejected_upload_raises(self, server, make_client):
        server.route("/api/Streaming/Upload/", httpx.Response(413, text="too large"))
        async with make_client() as client:
            with pytest.raises(ExpressAPIError) as exc_info:
                await client.upload("A.zip", io.BytesIO(b"PK"))
        assert exc_info.value.status_code == 413

    @pytest.mark.asyncio
    async def test_already_cancelled(self, server, make_client):
        event = asyncio.Event()
        event.set()
        async with make_client() as client:
            with pytest.raises(UploadCancelledError):
                await client.upload("A.zip", io.BytesIO(b"PK"), event)
        assert server.requests == []

    @pytest.mark.asyncio
    async def test_cancelled_mid_flight(self, server, make_client):
        async def slow(request):
            await asyncio.sleep(30)
            return httpx.Response(200)

        server.route("/api/Streaming/Upload/", slow)
        event = asyncio.Event()
        asyncio.get_running_loop().call_later(0.05, event.set)

        async with make_client() as client:
            with pytest.raises(UploadCancelledError) as exc_info:
                await asyncio.wait_for(client.upload("A.zip", io.BytesIO(b"PK"), event), timeout=5)
        assert exc_info.value.archive_name == "A.zip"

    @pytest.mark.asyncio
    async def test_caller_cancelled_stops_request(self, server, make_client):
        started = asyncio.Event()
        stopped = []

        async def slow(request):
            started.set()
            try:
                await asyncio.sleep(30)
            except asyncio.CancelledError:
                stopped.append(request.url.path)
                raise
            return httpx.Response(200)

        server.route("/api/Streaming/Upload/", slow)

        async with make_client() as client:
            task = asyncio.create_task(client.upload("A.zip", io.BytesIO(b"PK"), asyncio.Event()))
            await started.wait()
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task
            # request task already finished when upload returns
            assert stopped == ["/api/Streaming/Upload/"]


def test_inspect_url():
    assert ExpressClient(BASE_URL + "/").inspect_url("e1") == f"{BASE_URL}/Inspect/e1"
