"""Tests for the hosted (Supabase-compatible) gateway."""

import uuid

import httpx
import pytest
from pytest_httpx import HTTPXMock

from duet.clients.gateway import eq
from duet.clients.supabase import SupabaseGateway, SupabaseNotConfigured
from duet.core.errors import (
    INVALID_LOGIN_MESSAGE,
    AuthError,
    DataError,
    StorageError,
    friendly_auth_message,
)

URL = "https://duet-test.supabase.co"
KEY = "anon-key"
USER_ID = uuid.UUID("2b1f4a52-8a2e-4d3c-9a51-0c6b7f1e9d10")


def _token_response(token="access-1"):
    return {
        "access_token": token,
        "token_type": "bearer",
        "expires_in": 3600,
        "user": {"id": str(USER_ID), "email": "alex@example.com"},
    }


@pytest.fixture
def supabase(tmp_path):
    return SupabaseGateway(URL, KEY, session_path=tmp_path / "session.json")


async def _signed_in(gateway, httpx_mock):
    httpx_mock.add_response(
        method="POST",
        url=f"{URL}/auth/v1/token?grant_type=password",
        json=_token_response(),
    )
    return await gateway.sign_in("alex@example.com", "secret1")


class TestConfiguration:
    def test_requires_url_and_key(self):
        with pytest.raises(SupabaseNotConfigured):
            SupabaseGateway("", "")

    def test_public_url(self, supabase):
        assert (
            supabase.public_url("audio", "p1/1700000000000-Our Song.mp3")
            == f"{URL}/storage/v1/object/public/audio/p1/1700000000000-Our%20Song.mp3"
        )


class TestAuth:
    """GoTrue endpoints."""

    async def test_sign_in_establishes_session(self, supabase, httpx_mock: HTTPXMock, tmp_path):
        seen = []
        supabase.on_session_change(seen.append)

        session = await _signed_in(supabase, httpx_mock)

        assert session.user.id == USER_ID
        assert session.expires_at is not None
        assert seen == [session]
        assert (tmp_path / "session.json").exists()
        assert await supabase.current_session() == session

        request = httpx_mock.get_request()
        assert request.headers["apikey"] == KEY
        assert request.headers["Authorization"] == f"Bearer {KEY}"

    async def test_invalid_credentials(self, supabase, httpx_mock: HTTPXMock):
        httpx_mock.add_response(
            method="POST",
            url=f"{URL}/auth/v1/token?grant_type=password",
            status_code=400,
            json={"error": "invalid_grant", "error_description": "Invalid login credentials"},
        )

        with pytest.raises(AuthError) as exc:
            await supabase.sign_in("alex@example.com", "nope123")

        assert exc.value.status == 400
        assert friendly_auth_message(exc.value) == INVALID_LOGIN_MESSAGE
        assert await supabase.current_session() is None

    async def test_sign_up_sends_display_name(self, supabase, httpx_mock: HTTPXMock):
        httpx_mock.add_response(
            method="POST",
            url=f"{URL}/auth/v1/signup",
            match_json={"email": "alex@example.com", "password": "secret1", "data": {"display_name": "Alex"}},
            json=_token_response(),
        )
        session = await supabase.sign_up("alex@example.com", "secret1", "Alex")
        assert session.access_token == "access-1"

    async def test_sign_up_pending_confirmation(self, supabase, httpx_mock: HTTPXMock):
        httpx_mock.add_response(
            method="POST",
            url=f"{URL}/auth/v1/signup",
            json={"id": str(USER_ID), "email": "alex@example.com", "confirmation_sent_at": "2026-10-19T00:00:00Z"},
        )
        assert await supabase.sign_up("alex@example.com", "secret1", "Alex") is None
        assert await supabase.current_session() is None

    async def test_sign_out_clears_even_if_remote_fails(self, supabase, httpx_mock: HTTPXMock, tmp_path):
        await _signed_in(supabase, httpx_mock)
        seen = []
        supabase.on_session_change(seen.append)
        httpx_mock.add_response(method="POST", url=f"{URL}/auth/v1/logout", status_code=401, json={"msg": "bad jwt"})

        await supabase.sign_out()

        assert seen == [None]
        assert not (tmp_path / "session.json").exists()
        assert await supabase.current_session() is None

    async def test_session_restored_from_file(self, supabase, httpx_mock: HTTPXMock, tmp_path):
        session = await _signed_in(supabase, httpx_mock)
        restarted = SupabaseGateway(URL, KEY, session_path=tmp_path / "session.json")
        assert await restarted.current_session() == session

    async def test_unsubscribe(self, supabase, httpx_mock: HTTPXMock):
        seen = []
        unsubscribe = supabase.on_session_change(seen.append)
        unsubscribe()
        await _signed_in(supabase, httpx_mock)
        assert seen == []


class TestRest:
    """PostgREST table access."""

    async def test_select_with_filter_and_order(self, supabase, httpx_mock: HTTPXMock):
        await _signed_in(supabase, httpx_mock)
        profile_id = uuid.uuid4()
        rows = [{"id": str(uuid.uuid4()), "song_id": str(uuid.uuid4()), "user_id": str(profile_id)}]
        httpx_mock.add_response(
            method="GET",
            url=httpx.URL(
                f"{URL}/rest/v1/favorites",
                params=[("select", "*"), ("user_id", f"eq.{profile_id}"), ("order", "created_at.desc")],
            ),
            match_headers={"Authorization": "Bearer access-1"},
            json=rows,
        )

        result = await supabase.select("favorites", [eq("user_id", profile_id)], order=("created_at", True))

        assert result == rows

    async def test_insert_returns_representation(self, supabase, httpx_mock: HTTPXMock):
        song_id, profile_id = uuid.uuid4(), uuid.uuid4()
        created = {"id": str(uuid.uuid4()), "song_id": str(song_id), "played_by": str(profile_id)}
        httpx_mock.add_response(
            method="POST",
            url=f"{URL}/rest/v1/plays",
            match_json={"song_id": str(song_id), "played_by": str(profile_id)},
            match_headers={"Prefer": "return=representation"},
            status_code=201,
            json=[created],
        )

        assert await supabase.insert("plays", {"song_id": song_id, "played_by": profile_id}) == created

    async def test_write_error(self, supabase, httpx_mock: HTTPXMock):
        httpx_mock.add_response(
            method="POST",
            url=f"{URL}/rest/v1/favorites",
            status_code=409,
            json={"code": "23505", "message": "duplicate key value violates unique constraint"},
        )
        with pytest.raises(DataError) as exc:
            await supabase.insert("favorites", {"song_id": "s", "user_id": "u"})
        assert exc.value.status == 409
        assert "duplicate key" in exc.value.message

    async def test_delete_requires_filter(self, supabase):
        with pytest.raises(DataError):
            await supabase.delete("songs", [])

    async def test_unknown_table(self, supabase):
        with pytest.raises(ValueError):
            await supabase.select("users")

    async def test_network_failure(self, supabase, httpx_mock: HTTPXMock):
        httpx_mock.add_exception(httpx.ConnectError("refused"))
        with pytest.raises(DataError):
            await supabase.select("songs")


class TestStorage:
    async def test_upload(self, supabase, httpx_mock: HTTPXMock):
        httpx_mock.add_response(
            method="POST",
            url=f"{URL}/storage/v1/object/audio/p1/1700000000000-a.mp3",
            match_content=b"ID3audio",
            match_headers={"Content-Type": "audio/mpeg", "x-upsert": "false"},
            json={"Key": "audio/p1/1700000000000-a.mp3"},
        )
        await supabase.upload("audio", "p1/1700000000000-a.mp3", b"ID3audio", "audio/mpeg")

    async def test_upload_failure(self, supabase, httpx_mock: HTTPXMock):
        httpx_mock.add_response(
            method="POST",
            url=f"{URL}/storage/v1/object/covers/p1/1-c.jpg",
            status_code=400,
            json={"statusCode": "409", "error": "Duplicate", "message": "The resource already exists"},
        )
        with pytest.raises(StorageError) as exc:
            await supabase.upload("covers", "p1/1-c.jpg", b"jpeg")
        assert exc.value.message == "The resource already exists"
