"""
Tests for the vendor clients and service helpers (no network)
"""

import json
import time
from contextlib import asynccontextmanager
from datetime import datetime, timedelta
from types import SimpleNamespace
from unittest.mock import AsyncMock, MagicMock, patch
from urllib.parse import parse_qs

import httpx
import pytest
import pytest_asyncio

from app.config import settings
from app.db.models import OAuthConnection
from app.services import agent_config_service, oauth_service, sip_service
from app.services.cache import MemoryCache, set_cache
from app.services.exotel_client import (
    Exophone,
    ExotelAPIError,
    ExotelClient,
    ExotelNotConfigured,
    find_number,
    format_exophone,
    format_phone_for_exotel,
    get_exotel_client,
    normalize_phone,
    parse_call,
    parse_exophones,
    parse_rest_exception,
)
from app.services.http_client import call_with_retry, is_transient_error, request_with_retry
from app.services.knowledge_base_service import (
    KnowledgeBaseNotConfigured,
    KnowledgeBaseService,
    detect_document_type,
    document_name_for,
    estimate_chunks,
    parse_retrieval_nodes,
)


@pytest_asyncio.fixture(autouse=True)
async def fresh_cache():
    """Isolate the process-wide cache per test"""
    cache = MemoryCache()
    set_cache(cache)
    yield cache
    set_cache(None)


EXOPHONES_XML = """<?xml version="1.0" encoding="UTF-8"?>
<TwilioResponse>
  <IncomingPhoneNumbers>
    <IncomingPhoneNumber>
      <Sid>exo-1</Sid>
      <PhoneNumber>+912247790694</PhoneNumber>
      <FriendlyName>Front desk</FriendlyName>
      <Capabilities><Voice>true</Voice><SMS>false</SMS></Capabilities>
      <DateCreated>2026-01-05 10:00:00</DateCreated>
    </IncomingPhoneNumber>
    <IncomingPhoneNumber>
      <Sid>exo-2</Sid>
      <PhoneNumber>08012345678</PhoneNumber>
    </IncomingPhoneNumber>
  </IncomingPhoneNumbers>
</TwilioResponse>"""

CALL_XML = """<TwilioResponse>
  <Call>
    <Sid>CA-9f8e</Sid>
    <Status>in-progress</Status>
    <From>02247790694</From>
    <To>919876543210</To>
  </Call>
</TwilioResponse>"""


# ============ Exotel Tests ============

class TestPhoneFormatting:
    @pytest.mark.parametrize("raw", ["+912247790694", "912247790694", "02247790694", "2247790694", "+91 22 4779-0694"])
    def test_normalize_phone(self, raw):
        assert normalize_phone(raw) == "2247790694"

    def test_format_for_exotel(self):
        assert format_phone_for_exotel("9876543210") == "919876543210"
        assert format_phone_for_exotel("+91 98765 43210") == "919876543210"
        assert format_phone_for_exotel("919876543210") == "919876543210"

    def test_format_exophone_keeps_short_forms(self):
        assert format_exophone("02247790694") == "02247790694"
        assert format_exophone("+912247790694") == "912247790694"

    def test_find_number_ignores_formatting(self):
        numbers = [Exophone(sid="a", phone_number="08012345678"), Exophone(sid="b", phone_number="+912247790694")]
        assert find_number(numbers, "02247790694").sid == "b"
        assert find_number(numbers, "9999999999") is None


class TestExotelParsing:
    def test_parse_exophones_xml(self):
        numbers = parse_exophones(EXOPHONES_XML)
        assert [n.sid for n in numbers] == ["exo-1", "exo-2"]
        assert numbers[0].friendly_name == "Front desk"
        assert numbers[0].capabilities == {"voice": True, "sms": False}
        assert numbers[1].capabilities == {"voice": False, "sms": False}

    def test_parse_exophones_json(self):
        body = json.dumps({"IncomingPhoneNumbers": [{"Sid": "exo-3", "PhoneNumber": "02240000000"}]})
        numbers = parse_exophones(body)
        assert numbers[0].sid == "exo-3"
        assert numbers[0].phone_number == "02240000000"

    def test_parse_call(self):
        call = parse_call(CALL_XML)
        assert call.sid == "CA-9f8e"
        assert call.status == "in-progress"
        assert call.to_number == "919876543210"

        call = parse_call(json.dumps({"Call": {"Sid": "CA-json", "Status": "queued"}}))
        assert call.sid == "CA-json"

    def test_parse_call_without_sid(self):
        with pytest.raises(ExotelAPIError):
            parse_call("<TwilioResponse><Call></Call></TwilioResponse>")
        with pytest.raises(ExotelAPIError):
            parse_call("not a response")

    def test_parse_rest_exception(self):
        body = "<TwilioResponse><RestException><Status>403</Status><Message>Not allowed</Message></RestException></TwilioResponse>"
        assert parse_rest_exception(body) == "Not allowed"
        assert parse_rest_exception("plain text") is None


class TestExotelClient:
    def _client(self, handler) -> ExotelClient:
        return ExotelClient("key", "token", "acct", transport=httpx.MockTransport(handler))

    @pytest.mark.asyncio
    async def test_list_numbers(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, text=EXOPHONES_XML)

        numbers = await self._client(handler).list_numbers()
        assert len(numbers) == 2
        assert str(seen[0].url) == "https://api.in.exotel.com/v1/Accounts/acct/IncomingPhoneNumbers"
        assert seen[0].headers["authorization"].startswith("Basic ")

    @pytest.mark.asyncio
    async def test_client_error_is_not_retried(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(401, text="<RestException><Message>Bad credentials</Message></RestException>")

        with pytest.raises(ExotelAPIError) as exc_info:
            await self._client(handler).list_numbers()
        assert exc_info.value.status_code == 401
        assert "Bad credentials" in str(exc_info.value)
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_place_outbound_call_with_flow(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, text=CALL_XML)

        call = await self._client(handler).place_outbound_call("02247790694", "9876543210", app_id="33560")
        assert call.sid == "CA-9f8e"

        request = seen[0]
        assert request.url.path.endswith("/Calls/connect")
        form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        assert form == {
            "From": "02247790694",
            "To": "919876543210",
            "CallerId": "02247790694",
            "CallType": "trans",
            "AppId": "33560",
        }

    @pytest.mark.asyncio
    async def test_place_outbound_call_is_attempted_once(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(503, text="busy")

        with pytest.raises(ExotelAPIError):
            await self._client(handler).place_outbound_call("02247790694", "9876543210", app_id="33560")
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_search_available_numbers(self):
        seen = []
        body = """<TwilioResponse><ExoPhones>
          <ExoPhone><PhoneNumber>02248900001</PhoneNumber><FriendlyName>Mumbai 1</FriendlyName></ExoPhone>
          <ExoPhone><PhoneNumber>02248900002</PhoneNumber></ExoPhone>
        </ExoPhones></TwilioResponse>"""

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, text=body)

        numbers = await self._client(handler).search_available_numbers("MH")
        assert [n.phone_number for n in numbers] == ["02248900001", "02248900002"]
        assert numbers[0].friendly_name == "Mumbai 1"
        assert numbers[1].region == "MH"
        assert seen[0].url.path.endswith("/AvailablePhoneNumbers")
        assert seen[0].url.params["InRegion"] == "MH"

    @pytest.mark.asyncio
    async def test_buy_number_is_attempted_once(self, monkeypatch):
        monkeypatch.setattr(settings, "http_retry_backoff_seconds", 0)
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(503, text="busy")

        with pytest.raises(ExotelAPIError) as exc_info:
            await self._client(handler).buy_number("02248900001", "Front desk")
        assert exc_info.value.status_code == 503
        assert len(calls) == 1
        form = {k: v[0] for k, v in parse_qs(calls[0].content.decode()).items()}
        assert form == {"PhoneNumber": "02248900001", "FriendlyName": "Front desk"}

    @pytest.mark.asyncio
    async def test_get_and_update_number(self):
        seen = []
        single = """<TwilioResponse><IncomingPhoneNumber>
          <Sid>exo-1</Sid><PhoneNumber>02247790694</PhoneNumber><FriendlyName>Reception</FriendlyName>
        </IncomingPhoneNumber></TwilioResponse>"""

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, text=single)

        client = self._client(handler)
        number = await client.get_number("exo-1")
        assert (number.sid, number.friendly_name) == ("exo-1", "Reception")

        number = await client.update_number("exo-1", "Reception")
        assert number.phone_number == "02247790694"
        assert [r.method for r in seen] == ["GET", "PUT"]
        assert seen[1].url.path.endswith("/IncomingPhoneNumbers/exo-1")
        assert parse_qs(seen[1].content.decode()) == {"FriendlyName": ["Reception"]}

    @pytest.mark.asyncio
    async def test_read_is_retried_after_unavailable(self, monkeypatch):
        monkeypatch.setattr(settings, "http_retry_backoff_seconds", 0)
        responses = [httpx.Response(503, text="busy"), httpx.Response(200, text=EXOPHONES_XML)]

        def handler(request: httpx.Request) -> httpx.Response:
            return responses.pop(0)

        numbers = await self._client(handler).list_numbers()
        assert len(numbers) == 2
        assert responses == []

    def test_get_client_requires_credentials(self, monkeypatch):
        monkeypatch.setattr(settings, "exotel_api_key", None)
        with pytest.raises(ExotelNotConfigured):
            get_exotel_client()

        monkeypatch.setattr(settings, "exotel_api_key", "key")
        monkeypatch.setattr(settings, "exotel_api_token", "token")
        monkeypatch.setattr(settings, "exotel_account_sid", None)
        client = get_exotel_client()
        assert client.base_url == "https://api.in.exotel.com/v1/Accounts/key"


# ============ Cache Tests ============

class TestMemoryCache:
    @pytest.mark.asyncio
    async def test_set_get_pop(self):
        cache = MemoryCache()
        await cache.set("k", {"user_id": "u1"})
        assert await cache.get("k") == {"user_id": "u1"}
        assert await cache.pop("k") == {"user_id": "u1"}
        assert await cache.pop("k") is None

    @pytest.mark.asyncio
    async def test_expired_entries_are_dropped(self):
        cache = MemoryCache()
        cache._data["old"] = ("v", time.time() - 1)
        await cache.set("fresh", "v", ttl=60)
        assert await cache.get("old") is None
        assert await cache.get("fresh") == "v"
        assert "old" not in cache._data


# ============ Retry Tests ============

class TestRetry:
    @pytest.mark.asyncio
    async def test_request_with_retry_recovers(self):
        statuses = iter([503, 429, 200])
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            return httpx.Response(next(statuses))

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            response = await request_with_retry("GET", "https://vendor.test/x", client=client, max_retries=2, backoff=0)
        assert response.status_code == 200
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_request_with_retry_returns_last_response(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(502)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            response = await request_with_retry("GET", "https://vendor.test/x", client=client, max_retries=1, backoff=0)
        assert response.status_code == 502

    @pytest.mark.asyncio
    async def test_request_with_retry_raises_transport_error(self):
        calls = []

        def handler(request: httpx.Request) -> httpx.Response:
            calls.append(request)
            raise httpx.ConnectError("refused", request=request)

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(httpx.ConnectError):
                await request_with_retry("GET", "https://vendor.test/x", client=client, max_retries=1, backoff=0)
        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_call_with_retry(self):
        attempts = []

        async def flaky():
            attempts.append(1)
            if len(attempts) < 2:
                raise ConnectionError("reset")
            return "ok"

        assert await call_with_retry(flaky, label="TEST", max_retries=2, backoff=0) == "ok"
        assert len(attempts) == 2

    @pytest.mark.asyncio
    async def test_call_with_retry_does_not_retry_permanent_errors(self):
        make_call = AsyncMock(side_effect=ValueError("bad request"))
        with pytest.raises(ValueError):
            await call_with_retry(make_call, label="TEST", max_retries=3, backoff=0)
        assert make_call.await_count == 1

    def test_is_transient_error(self):
        class TwirpLikeError(Exception):
            def __init__(self, status):
                super().__init__(f"status {status}")
                self.status = status

        assert is_transient_error(ConnectionError())
        assert is_transient_error(httpx.ReadTimeout("slow"))
        assert is_transient_error(TwirpLikeError(503))
        assert not is_transient_error(TwirpLikeError(404))
        assert not is_transient_error(ValueError())


# ============ SIP Provisioning Tests ============

def _fake_livekit():
    lk = MagicMock()
    lk.sip.create_sip_inbound_trunk = AsyncMock(return_value=SimpleNamespace(sip_trunk_id="ST_in"))
    lk.sip.create_sip_outbound_trunk = AsyncMock(return_value=SimpleNamespace(sip_trunk_id="ST_out"))
    lk.sip.create_sip_dispatch_rule = AsyncMock(return_value=SimpleNamespace(sip_dispatch_rule_id="SDR_1"))
    lk.sip.delete_sip_trunk = AsyncMock()
    lk.sip.delete_sip_dispatch_rule = AsyncMock()

    @asynccontextmanager
    async def livekit_api():
        yield lk

    return lk, livekit_api


class TestSipService:
    def test_derive_sip_domain(self, monkeypatch):
        monkeypatch.setattr(settings, "exotel_sip_domain", None)
        monkeypatch.setattr(settings, "livekit_url", "wss://voice-abc123.livekit.cloud")
        assert sip_service.derive_sip_domain() == "voice-abc123.sip.livekit.cloud"

        monkeypatch.setattr(settings, "exotel_sip_domain", "sip.example.com")
        assert sip_service.derive_sip_domain() == "sip.example.com"

    def test_outbound_trunk_number(self):
        assert sip_service.outbound_trunk_number("+912247790694") == "2247790694"
        assert sip_service.outbound_trunk_number("02247790694") == "2247790694"
        # Only the trunk prefix zero is dropped
        assert sip_service.outbound_trunk_number("002247790694") == "02247790694"
        assert sip_service.outbound_trunk_number("2247790694") == "2247790694"

    @pytest.mark.asyncio
    async def test_setup_creates_trunks_and_dispatch_rule(self, monkeypatch):
        monkeypatch.setattr(settings, "exotel_sip_domain", "sip.example.com")
        lk, fake_api = _fake_livekit()
        with patch("app.services.sip_service.livekit_api", fake_api):
            result = await sip_service.setup_telephony_for_agent("abcd1234-5678", "02247790694")

        assert result.inbound_trunk_id == "ST_in"
        assert result.outbound_trunk_id == "ST_out"
        assert result.dispatch_rule_id == "SDR_1"
        assert result.sip_uri == "sip:sip.example.com"

        inbound = lk.sip.create_sip_inbound_trunk.await_args.args[0]
        assert inbound.trunk.name == "trunk-in-abcd1234"
        assert list(inbound.trunk.numbers) == ["02247790694"]

        outbound = lk.sip.create_sip_outbound_trunk.await_args.args[0]
        assert list(outbound.trunk.numbers) == ["2247790694"]

        rule = lk.sip.create_sip_dispatch_rule.await_args.args[0]
        assert rule.rule.dispatch_rule_individual.room_prefix == "call-abcd1234-"
        assert list(rule.trunk_ids) == ["ST_in"]
        assert rule.room_config.agents[0].agent_name == settings.agent_name

    @pytest.mark.asyncio
    async def test_setup_rolls_back_on_failure(self):
        lk, fake_api = _fake_livekit()
        lk.sip.create_sip_dispatch_rule = AsyncMock(side_effect=RuntimeError("quota exceeded"))
        with patch("app.services.sip_service.livekit_api", fake_api):
            with pytest.raises(sip_service.TelephonyProvisioningError):
                await sip_service.setup_telephony_for_agent("abcd1234-5678", "02247790694")

        deleted = [c.args[0].sip_trunk_id for c in lk.sip.delete_sip_trunk.await_args_list]
        assert deleted == ["ST_in", "ST_out"]
        lk.sip.delete_sip_dispatch_rule.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_teardown_reports_failures_without_raising(self):
        lk, fake_api = _fake_livekit()
        lk.sip.delete_sip_trunk = AsyncMock(side_effect=[RuntimeError("not found"), None])
        config = SimpleNamespace(
            agent_config_id="abcd1234", inbound_trunk_id="ST_in", outbound_trunk_id="ST_out", dispatch_rule_id="SDR_1"
        )
        with patch("app.services.sip_service.livekit_api", fake_api):
            failures = await sip_service.teardown_telephony(config)

        assert failures == [("trunk ST_in", "not found")]
        lk.sip.delete_sip_dispatch_rule.assert_awaited_once()
        assert lk.sip.delete_sip_trunk.await_count == 2

    @pytest.mark.asyncio
    async def test_list_trunks(self, monkeypatch):
        monkeypatch.setattr(settings, "http_retry_backoff_seconds", 0)
        inbound = SimpleNamespace(
            sip_trunk_id="ST_in",
            name="trunk-in-abcd1234",
            numbers=["02247790694"],
            metadata=json.dumps({"agentConfigId": "abcd1234-5678", "direction": "inbound"}),
        )
        orphan = SimpleNamespace(sip_trunk_id="ST_old", name="manual", numbers=[], metadata="not json")
        lk, fake_api = _fake_livekit()
        lk.sip.list_sip_inbound_trunk = AsyncMock(
            side_effect=[ConnectionError("reset"), SimpleNamespace(items=[inbound])]
        )
        lk.sip.list_sip_outbound_trunk = AsyncMock(return_value=SimpleNamespace(items=[orphan]))
        with patch("app.services.sip_service.livekit_api", fake_api):
            trunks = await sip_service.list_trunks()

        assert trunks["inbound"] == [{
            "sip_trunk_id": "ST_in",
            "name": "trunk-in-abcd1234",
            "numbers": ["02247790694"],
            "agent_config_id": "abcd1234-5678",
        }]
        assert trunks["outbound"][0]["agent_config_id"] is None
        assert lk.sip.list_sip_inbound_trunk.await_count == 2


# ============ Knowledge Base Tests ============

class TestKnowledgeBaseHelpers:
    def test_detect_document_type(self):
        assert detect_document_type("notes.MD") == "md"
        assert detect_document_type("upload.bin", "application/pdf") == "pdf"
        assert detect_document_type("data.json", "application/octet-stream") == "json"
        assert detect_document_type("photo.png", "image/png") is None
        assert detect_document_type(None, "text/plain") == "txt"

    def test_document_name_for_missing_filename(self):
        assert document_name_for("faq.txt", "txt") == "faq.txt"
        assert document_name_for(None, "pdf") == "upload.pdf"
        assert document_name_for("   ", "md") == "upload.md"

    def test_estimate_chunks(self):
        assert estimate_chunks(0) == 1
        assert estimate_chunks(1024) == 1
        assert estimate_chunks(2049) == 3

    def test_parse_retrieval_nodes(self):
        data = {"retrieval_nodes": [
            {"node": {"text": "Open 9 to 5", "extra_info": {"fileName": "faq.txt"}}, "score": 0.82},
            {"text": "Closed Sundays", "score": None, "metadata": {"fileName": "hours.md"}},
        ]}
        chunks = parse_retrieval_nodes(data)
        assert [c.text for c in chunks] == ["Open 9 to 5", "Closed Sundays"]
        assert chunks[0].score == 0.82
        assert chunks[1].score == 0.0
        assert chunks[1].metadata == {"fileName": "hours.md"}


class TestKnowledgeBaseService:
    def _service(self, handler, embedding_api_key="sk-test") -> KnowledgeBaseService:
        return KnowledgeBaseService(
            api_key="llx-test",
            project_id="proj-1",
            base_url="https://llama.test",
            embedding_api_key=embedding_api_key,
            transport=httpx.MockTransport(handler),
        )

    @pytest.mark.asyncio
    async def test_index_document(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            if request.url.path == "/api/v1/pipelines":
                return httpx.Response(200, json={"id": "pipe-1"})
            if request.url.path == "/api/v1/files":
                return httpx.Response(200, json={"id": "file-1"})
            if request.url.path == "/api/v1/pipelines/pipe-1/files":
                return httpx.Response(200, json=[])
            return httpx.Response(404)

        kb = self._service(handler)
        chunks = await kb.index_document(b"x" * 2048, "faq.txt", "txt", "agent-1", "doc-1")
        assert chunks == 2

        pipeline = json.loads(seen[0].content)
        assert pipeline["name"] == "agent-agent-1"
        assert seen[0].url.params["project_id"] == "proj-1"
        assert seen[0].headers["authorization"] == "Bearer llx-test"

        attach = json.loads(seen[2].content)
        assert attach[0]["file_id"] == "file-1"
        metadata = attach[0]["custom_metadata"]
        assert set(metadata) == {"fileName", "fileType", "documentId", "agentConfigId", "uploadedAt"}
        assert (metadata["fileName"], metadata["fileType"]) == ("faq.txt", "txt")
        assert (metadata["documentId"], metadata["agentConfigId"]) == ("doc-1", "agent-1")

        # Pipeline id is cached
        await kb.ensure_pipeline("agent-1")
        assert [r.url.path for r in seen].count("/api/v1/pipelines") == 1

    @pytest.mark.asyncio
    async def test_query(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/api/v1/pipelines":
                return httpx.Response(200, json={"id": "pipe-1"})
            body = json.loads(request.content)
            assert body == {"query": "opening hours", "similarity_top_k": 2}
            return httpx.Response(200, json={"retrieval_nodes": [
                {"node": {"text": "Open 9 to 5", "extra_info": {"fileName": "faq.txt"}}, "score": 0.9},
            ]})

        results = await self._service(handler).query("opening hours", "agent-1", top_k=2)
        assert results[0].text == "Open 9 to 5"
        assert results[0].metadata == {"fileName": "faq.txt"}

    @pytest.mark.asyncio
    async def test_query_failure_returns_empty(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/api/v1/pipelines":
                return httpx.Response(200, json={"id": "pipe-1"})
            return httpx.Response(400, json={"detail": "bad"})

        assert await self._service(handler).query("anything", "agent-1") == []

    @pytest.mark.asyncio
    async def test_embedding_key_required(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        kb = self._service(handler, embedding_api_key=None)
        with pytest.raises(KnowledgeBaseNotConfigured):
            await kb.index_document(b"hello", "faq.txt", "txt", "agent-1", "doc-1")
        assert await kb.query("hello", "agent-1") == []


# ============ Agent Config Tests ============

def test_share_code_alphabet():
    for _ in range(50):
        code = agent_config_service.generate_share_code()
        assert len(code) == 10
        assert set(code) <= set(agent_config_service.SHARE_CODE_ALPHABET)
        assert not set(code) & set("0O1Iil")


# ============ OAuth Tests ============

class TestOAuthService:
    @pytest.fixture(autouse=True)
    def google_config(self, monkeypatch):
        monkeypatch.setattr(settings, "google_client_id", "client-id")
        monkeypatch.setattr(settings, "google_client_secret", "client-secret")

    @pytest.mark.asyncio
    async def test_state_is_single_use(self):
        state = await oauth_service.create_state("user-1")
        assert await oauth_service.consume_state(state) == "user-1"
        assert await oauth_service.consume_state(state) is None
        assert await oauth_service.consume_state("unknown") is None

    @pytest.mark.asyncio
    async def test_state_expires_after_ttl(self):
        issued_at = time.time()
        fresh = await oauth_service.create_state("user-1")
        stale = await oauth_service.create_state("user-2")
        ttl = settings.oauth_state_ttl_seconds
        assert ttl == 600

        with patch("app.services.cache.time", SimpleNamespace(time=lambda: issued_at + ttl - 30)):
            assert await oauth_service.consume_state(fresh) == "user-1"
        with patch("app.services.cache.time", SimpleNamespace(time=lambda: issued_at + ttl + 1)):
            assert await oauth_service.consume_state(stale) is None
        # Expired states are gone for good
        assert await oauth_service.consume_state(stale) is None

    def test_build_auth_url(self):
        url = oauth_service.build_auth_url("state-1")
        assert "client_id=client-id" in url
        assert "state=state-1" in url
        assert "calendar.events" in url

    def test_build_auth_url_requires_config(self, monkeypatch):
        monkeypatch.setattr(settings, "google_client_secret", None)
        with pytest.raises(oauth_service.OAuthNotConfigured):
            oauth_service.build_auth_url("state-1")

    @pytest.mark.asyncio
    async def test_exchange_code(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"access_token": "ya29.a", "refresh_token": "1//r", "expires_in": 3599})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            tokens = await oauth_service.exchange_code("auth-code", client=client)
        assert tokens["access_token"] == "ya29.a"

        form = {k: v[0] for k, v in parse_qs(seen[0].content.decode()).items()}
        assert form["grant_type"] == "authorization_code"
        assert form["code"] == "auth-code"
        assert form["client_secret"] == "client-secret"

    @pytest.mark.asyncio
    async def test_exchange_code_failure(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(400, json={"error": "invalid_grant"})

        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            with pytest.raises(oauth_service.OAuthError):
                await oauth_service.exchange_code("bad", client=client)

    @pytest.mark.asyncio
    async def test_expired_token_is_refreshed(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(200, json={"access_token": "ya29.new", "expires_in": 3600})

        connection = OAuthConnection(
            user_id="user-1", provider="google", access_token="ya29.old",
            refresh_token="1//r", expires_at=datetime.utcnow() - timedelta(minutes=1),
        )
        db = MagicMock()
        db.commit = AsyncMock()
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            token = await oauth_service.get_valid_access_token(db, connection, client=client)

        assert token == "ya29.new"
        assert connection.expires_at > datetime.utcnow()
        db.commit.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_failed_refresh_falls_back_to_stored_token(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, json={"error": "invalid_grant"})

        connection = OAuthConnection(
            user_id="user-1", provider="google", access_token="ya29.old",
            refresh_token="1//r", expires_at=datetime.utcnow() - timedelta(minutes=1),
        )
        db = MagicMock()
        db.commit = AsyncMock()
        async with httpx.AsyncClient(transport=httpx.MockTransport(handler)) as client:
            token = await oauth_service.get_valid_access_token(db, connection, client=client)

        assert token == "ya29.old"
        db.commit.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_fresh_token_is_returned_as_is(self):
        connection = OAuthConnection(
            user_id="user-1", provider="google", access_token="ya29.live",
            refresh_token="1//r", expires_at=datetime.utcnow() + timedelta(minutes=30),
        )
        assert await oauth_service.get_valid_access_token(MagicMock(), connection) == "ya29.live"
