"""
Tests for the OIDC Auth Broker: begin / callback / poll.
"""

import asyncio
import base64
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from conftest import make_id_token
from oidc_broker.auth.broker import UUID_ERROR, client_uuid_matches, decode_client_uuid
from oidc_broker.oauth2.errors import (
    ExchangeFailure,
    ExchangeNetworkError,
    ExchangeRejected,
    ExchangeTimeout,
    InputDecodeError,
    SessionNotFound,
)
from oidc_broker.tokens import Token


async def begin(broker, client_uuid_b64, callback_url, op="dex", correlation_id="client-1"):
    return await broker.begin_auth(correlation_id, client_uuid_b64, op, callback_url)


class TestClientUuid:

    def test_decode(self, client_uuid, client_uuid_b64):
        assert decode_client_uuid(client_uuid_b64) == client_uuid.encode()

    @pytest.mark.parametrize("value", ["", "not base64!", "abc", "===="])
    def test_decode_rejects_malformed(self, value):
        with pytest.raises(InputDecodeError):
            decode_client_uuid(value)

    def test_match_raw_or_encoded(self, client_uuid, client_uuid_b64):
        stored = client_uuid.encode()
        assert client_uuid_matches(stored, client_uuid)
        assert client_uuid_matches(stored, client_uuid_b64)
        assert not client_uuid_matches(stored, "")
        assert not client_uuid_matches(stored, "other")
        assert not client_uuid_matches(stored, base64.b64encode(b"other").decode())


class TestBeginAuth:

    @pytest.mark.asyncio
    async def test_creates_pending_session(self, broker, store, client_uuid, client_uuid_b64, callback_url):
        result = await begin(broker, client_uuid_b64, callback_url)

        assert result.started
        params = parse_qs(urlparse(result.url).query)
        assert params["redirect_uri"] == [callback_url]
        assert params["state"] == [result.code]

        session = await store.get(result.code)
        assert session is not None
        assert session.is_pending
        assert session.id == "client-1"
        assert session.uuid == client_uuid.encode()
        assert session.callback_url == callback_url
        assert session.redirect_url == result.url

    @pytest.mark.asyncio
    async def test_session_code_is_token_shaped(self, broker, client_uuid_b64, callback_url):
        result = await begin(broker, client_uuid_b64, callback_url)
        assert Token.from_str(result.code).to_base64() == result.code

    @pytest.mark.asyncio
    async def test_codes_are_fresh(self, broker, store, client_uuid_b64, callback_url):
        codes = {(await begin(broker, client_uuid_b64, callback_url)).code for _ in range(20)}
        assert len(codes) == 20
        assert len(store) == 20

    @pytest.mark.asyncio
    async def test_callback_url_builder_called(self, broker, client_uuid_b64, callback_url):
        result = await begin(broker, client_uuid_b64, lambda: callback_url)
        assert parse_qs(urlparse(result.url).query)["redirect_uri"] == [callback_url]

    @pytest.mark.asyncio
    async def test_malformed_uuid(self, broker, store, callback_url):
        result = await begin(broker, "%%% not base64 %%%", callback_url)

        assert (result.url, result.code) == ("", UUID_ERROR)
        assert not result.started
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_unknown_provider(self, broker, store, client_uuid_b64, callback_url):
        result = await begin(broker, client_uuid_b64, callback_url, op="myspace")

        assert (result.url, result.code) == ("", "")
        assert len(store) == 0

    @pytest.mark.asyncio
    async def test_unsupported_provider(self, broker, store, client_uuid_b64, callback_url):
        result = await begin(broker, client_uuid_b64, callback_url, op="apple")

        assert (result.url, result.code) == ("", "")
        assert len(store) == 0


class TestHandleCallback:

    @pytest.mark.asyncio
    async def test_completes_session(self, broker, store, provider_stub, client_uuid_b64, callback_url):
        started = await begin(broker, client_uuid_b64, callback_url)

        session = await broker.handle_callback("auth-code", started.code)

        assert session.is_completed
        assert session.name == "Ann"
        assert session.email == "ann@example.com"
        assert session.authorization_code == "auth-code"
        assert (await store.get(started.code)) is session
        assert provider_stub.token_calls[0]["redirect_uri"] == callback_url
        assert provider_stub.token_calls[0]["code"] == "auth-code"

    @pytest.mark.asyncio
    async def test_unknown_session_leaves_store_unchanged(self, broker, store, provider_stub, client_uuid_b64, callback_url):
        started = await begin(broker, client_uuid_b64, callback_url)
        snapshot = dict(store._sessions)

        with pytest.raises(SessionNotFound):
            await broker.handle_callback("auth-code", "unknown-session-code")

        assert dict(store._sessions) == snapshot
        assert (await store.get(started.code)).is_pending
        assert provider_stub.token_calls == []

    @pytest.mark.asyncio
    async def test_rejected_exchange_keeps_session_pending(self, broker, store, provider_stub, client_uuid_b64, callback_url):
        provider_stub.token_status = 400
        provider_stub.token_body = {"error": "invalid_grant"}
        started = await begin(broker, client_uuid_b64, callback_url)

        with pytest.raises(ExchangeRejected):
            await broker.handle_callback("auth-code", started.code)

        assert (await store.get(started.code)).is_pending

    @pytest.mark.asyncio
    async def test_failed_exchange_can_be_retried(self, broker, store, provider_stub, client_uuid_b64, callback_url):
        provider_stub.error = httpx.ConnectError("connection refused")
        started = await begin(broker, client_uuid_b64, callback_url)

        with pytest.raises(ExchangeNetworkError):
            await broker.handle_callback("auth-code", started.code)

        provider_stub.error = None
        session = await broker.handle_callback("auth-code", started.code)

        assert session.is_completed
        assert len(provider_stub.token_calls) == 2

    @pytest.mark.asyncio
    async def test_deadline_exceeded(self, registry, store, users, provider_stub, client_uuid_b64, callback_url):
        from oidc_broker.auth.broker import AuthBroker

        broker = AuthBroker(registry=registry, store=store, users=users, exchange_timeout=0.05)
        provider_stub.delay = 1.0
        started = await begin(broker, client_uuid_b64, callback_url)

        with pytest.raises(ExchangeTimeout) as exc_info:
            await broker.handle_callback("auth-code", started.code)

        assert isinstance(exc_info.value, ExchangeFailure)
        assert exc_info.value.retryable
        assert (await store.get(started.code)).is_pending

    @pytest.mark.asyncio
    async def test_duplicate_delivery_is_idempotent(self, broker, store, provider_stub, client_uuid_b64, callback_url):
        started = await begin(broker, client_uuid_b64, callback_url)

        first = await broker.handle_callback("auth-code", started.code)
        second = await broker.handle_callback("auth-code", started.code)

        assert second.auth_token == first.auth_token
        assert (await store.get(started.code)).auth_token == first.auth_token
        assert len(provider_stub.token_calls) == 1

    @pytest.mark.asyncio
    async def test_concurrent_duplicate_delivery_exchanges_once(self, broker, store, provider_stub, client_uuid_b64, callback_url):
        provider_stub.delay = 0.05
        started = await begin(broker, client_uuid_b64, callback_url)

        first, second = await asyncio.gather(
            broker.handle_callback("auth-code", started.code),
            broker.handle_callback("auth-code", started.code),
        )

        assert first.auth_token == second.auth_token
        assert len(provider_stub.token_calls) == 1

    @pytest.mark.asyncio
    async def test_different_code_does_not_overwrite_completed_session(self, broker, store, provider_stub, client_uuid_b64, callback_url):
        started = await begin(broker, client_uuid_b64, callback_url)
        first = await broker.handle_callback("auth-code", started.code)

        provider_stub.token_body = {"access_token": "x", "id_token": make_id_token(name="Mallory", email="m@evil.test")}
        again = await broker.handle_callback("another-code", started.code)

        assert again.auth_token == first.auth_token
        assert again.name == "Ann"
        assert len(provider_stub.token_calls) == 1

    @pytest.mark.asyncio
    async def test_slow_exchange_does_not_block_other_sessions(self, broker, store, provider_stub, client_uuid_b64, callback_url):
        provider_stub.delay = 0.2
        slow = await begin(broker, client_uuid_b64, callback_url)
        other = await begin(broker, client_uuid_b64, callback_url, correlation_id="client-2")

        exchange = asyncio.create_task(broker.handle_callback("auth-code", slow.code))
        await asyncio.sleep(0.01)

        assert await asyncio.wait_for(broker.poll(other.code, "client-2", client_uuid_b64), timeout=0.05) is None
        assert await asyncio.wait_for(store.get(slow.code), timeout=0.05) is not None
        assert not exchange.done()

        await exchange

    @pytest.mark.asyncio
    async def test_session_expired_before_callback(self, broker, clock, client_uuid_b64, callback_url):
        started = await begin(broker, client_uuid_b64, callback_url)
        clock.advance(601)

        with pytest.raises(SessionNotFound):
            await broker.handle_callback("auth-code", started.code)


class TestPoll:

    @pytest.mark.asyncio
    async def test_pending_session_returns_none(self, broker, client_uuid_b64, callback_url):
        started = await begin(broker, client_uuid_b64, callback_url)
        assert await broker.poll(started.code, "client-1", client_uuid_b64) is None

    @pytest.mark.asyncio
    async def test_completed_session_returns_token(self, broker, users, client_uuid, client_uuid_b64, callback_url):
        started = await begin(broker, client_uuid_b64, callback_url)
        session = await broker.handle_callback("auth-code", started.code)

        result = await broker.poll(started.code, "client-1", client_uuid_b64)

        assert result.token == session.auth_token
        assert result.name == "Ann"
        assert result.email == "ann@example.com"
        assert result.is_admin is True
        assert users.lookup(result.token).name == "Ann"
        # raw uuid form is accepted too
        assert await broker.poll(started.code, "client-1", client_uuid) == result

    @pytest.mark.asyncio
    async def test_issued_token_differs_from_session_code(self, broker, client_uuid_b64, callback_url):
        started = await begin(broker, client_uuid_b64, callback_url)
        await broker.handle_callback("auth-code", started.code)

        result = await broker.poll(started.code, "client-1", client_uuid_b64)

        assert result.token.to_base64() != started.code

    @pytest.mark.asyncio
    async def test_mismatched_client_gets_nothing(self, broker, client_uuid_b64, callback_url):
        started = await begin(broker, client_uuid_b64, callback_url)
        await broker.handle_callback("auth-code", started.code)
        other_uuid = base64.b64encode(b"another-client-uuid").decode()

        assert await broker.poll(started.code, "client-2", client_uuid_b64) is None
        assert await broker.poll(started.code, "client-1", other_uuid) is None
        assert await broker.poll(started.code, "", "") is None
        assert await broker.poll(started.code, "client-1", client_uuid_b64) is not None

    @pytest.mark.asyncio
    async def test_unknown_and_expired_sessions(self, broker, clock, client_uuid_b64, callback_url):
        assert await broker.poll("unknown", "client-1", client_uuid_b64) is None

        started = await begin(broker, client_uuid_b64, callback_url)
        await broker.handle_callback("auth-code", started.code)
        clock.advance(601)

        assert await broker.poll(started.code, "client-1", client_uuid_b64) is None

    @pytest.mark.asyncio
    async def test_non_admin_user(self, broker, provider_stub, client_uuid_b64, callback_url):
        provider_stub.token_body = {"access_token": "at", "id_token": make_id_token(name="Bob", email="bob@example.com", sub="user-2")}
        started = await begin(broker, client_uuid_b64, callback_url)
        await broker.handle_callback("auth-code", started.code)

        result = await broker.poll(started.code, "client-1", client_uuid_b64)

        assert result.name == "Bob"
        assert result.is_admin is False

    @pytest.mark.asyncio
    async def test_admin_flag_follows_subject_not_display_name(self, broker, provider_stub, client_uuid_b64, callback_url):
        # GitHub account "mallory" renamed its profile to an admin's display name
        provider_stub.github_user = {"login": "mallory", "name": "Ann", "email": "m@evil.test"}
        started = await begin(broker, client_uuid_b64, callback_url, op="github")
        await broker.handle_callback("auth-code", started.code)

        result = await broker.poll(started.code, "client-1", client_uuid_b64)

        assert result.name == "Ann"
        assert result.email == "m@evil.test"
        assert result.is_admin is False

    @pytest.mark.asyncio
    async def test_same_name_on_two_providers_are_different_users(self, broker, users, provider_stub, client_uuid_b64, callback_url):
        provider_stub.github_user = {"login": "Ann", "name": "Ann"}
        via_dex = await begin(broker, client_uuid_b64, callback_url, op="dex")
        via_github = await begin(broker, client_uuid_b64, callback_url, op="github", correlation_id="client-2")
        await broker.handle_callback("code-1", via_dex.code)
        await broker.handle_callback("code-2", via_github.code)

        dex_result = await broker.poll(via_dex.code, "client-1", client_uuid_b64)
        github_result = await broker.poll(via_github.code, "client-2", client_uuid_b64)

        assert dex_result.is_admin is True
        assert github_result.is_admin is False
        assert users.lookup(dex_result.token) is users.get_user("dex", "user-1")
        assert users.lookup(github_result.token) is users.get_user("github", "ann")
