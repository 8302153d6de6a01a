"""Tests for the usage relay client using httpx.MockTransport."""

import httpx
import pytest

from keyquota.config import Settings
from keyquota.errors import RelayError
from keyquota.relay import AUTH_HEADER, CSRF_HEADER, RelayClient, compose_error, open_relay

from conftest import KEY_A, RelayStub

BASE = "http://relay.test/api.php"


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestComposeError:
    def test_message_and_detail(self):
        assert compose_error({"message": "Forbidden", "detail": "quota"}, 403) == "Forbidden: quota"

    def test_message_only(self):
        assert compose_error({"message": "Forbidden"}, 403) == "Forbidden"

    def test_detail_without_message(self):
        assert compose_error({"detail": "bad key"}, 400) == "Error: bad key"

    def test_empty_body_uses_status(self):
        assert compose_error({}, 502) == "HTTP 502"


class TestInitSession:
    @pytest.mark.asyncio
    async def test_stores_token(self, relay):
        assert await relay.init_session() == "tok123"
        assert relay.session_token == "tok123"

    @pytest.mark.asyncio
    async def test_missing_token(self):
        async with _client(lambda req: httpx.Response(200, json={})) as client:
            relay = RelayClient(BASE, client)
            with pytest.raises(RelayError, match="initialize"):
                await relay.init_session()
            assert relay.session_token is None

    @pytest.mark.asyncio
    async def test_network_failure(self):
        def handler(req):
            raise httpx.ConnectError("refused", request=req)

        async with _client(handler) as client:
            with pytest.raises(RelayError, match="ConnectError"):
                await RelayClient(BASE, client).init_session()


class TestFetchUsage:
    @pytest.mark.asyncio
    async def test_returns_body_verbatim(self, relay, relay_stub):
        relay_stub.body = {"character_count": 7, "character_limit": 500000, "extra": "kept"}
        await relay.init_session()
        assert await relay.fetch_usage(KEY_A) == relay_stub.body

    @pytest.mark.asyncio
    async def test_headers(self, relay, relay_stub):
        await relay.init_session()
        await relay.fetch_usage(KEY_A)
        (req,) = relay_stub.usage_calls
        assert req.method == "GET"
        assert req.headers[AUTH_HEADER] == KEY_A
        assert req.headers[CSRF_HEADER] == "tok123"
        assert req.headers["Content-Type"] == "application/json"

    @pytest.mark.asyncio
    async def test_cache_buster(self, relay, relay_stub):
        await relay.init_session()
        await relay.fetch_usage(KEY_A)
        t = relay_stub.usage_calls[0].url.params.get("t")
        assert t is not None and t.isdigit()

    @pytest.mark.asyncio
    async def test_error_status_composes_message(self, relay, relay_stub):
        relay_stub.status = 403
        relay_stub.body = {"message": "Forbidden", "detail": "Key revoked"}
        await relay.init_session()
        with pytest.raises(RelayError) as info:
            await relay.fetch_usage(KEY_A)
        assert str(info.value) == "Forbidden: Key revoked"
        assert info.value.status_code == 403

    @pytest.mark.asyncio
    async def test_error_status_without_body(self):
        async with _client(lambda req: httpx.Response(500, text="")) as client:
            with pytest.raises(RelayError, match="HTTP 500"):
                await RelayClient(BASE, client).fetch_usage(KEY_A)

    @pytest.mark.asyncio
    async def test_non_json_success(self):
        async with _client(lambda req: httpx.Response(200, text="<html>oops</html>")) as client:
            with pytest.raises(RelayError, match="non-JSON"):
                await RelayClient(BASE, client).fetch_usage(KEY_A)

    @pytest.mark.asyncio
    async def test_non_object_success(self):
        async with _client(lambda req: httpx.Response(200, json=[1, 2])) as client:
            with pytest.raises(RelayError, match="unexpected"):
                await RelayClient(BASE, client).fetch_usage(KEY_A)

    @pytest.mark.asyncio
    async def test_timeout_is_relay_error(self):
        def handler(req):
            raise httpx.ReadTimeout("slow", request=req)

        async with _client(handler) as client:
            with pytest.raises(RelayError, match="ReadTimeout"):
                await RelayClient(BASE, client).fetch_usage(KEY_A)


class TestOpenRelay:
    @pytest.mark.asyncio
    async def test_uses_settings_url(self, tmp_path):
        stub = RelayStub()
        seen = []

        def handler(req):
            seen.append(str(req.url))
            return stub(req)

        settings = Settings(relay_url="http://custom.test/relay.php", data_dir=tmp_path)
        async with open_relay(settings, transport=httpx.MockTransport(handler)) as relay:
            await relay.init_session()
        assert seen[0].startswith("http://custom.test/relay.php?action=init")
