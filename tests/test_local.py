"""Tests for the self-hosted gateway."""

import asyncio
import threading

import pytest

from duet.clients.gateway import AUDIO_BUCKET
from duet.core.errors import AuthError, StorageError


class TestBlockingWork:
    """Database and file calls stay off the event loop."""

    async def test_queries_run_in_a_worker_thread(self, gateway, monkeypatch):
        loop_thread = threading.get_ident()
        seen = []
        factory = gateway._db

        def tracking_factory():
            seen.append(threading.get_ident())
            return factory()

        monkeypatch.setattr(gateway, "_db", tracking_factory)

        await gateway.select("songs")
        with pytest.raises(AuthError):
            await gateway.sign_in("nobody@example.com", "secret1")

        assert len(seen) == 2
        assert loop_thread not in seen

    async def test_concurrent_writes_are_serialized(self, gateway, pair, add_song):
        me, _ = pair
        song = await add_song("A", me.id)

        await asyncio.gather(*(
            gateway.insert("plays", {"song_id": song["id"], "played_by": me.id}) for _ in range(10)
        ))

        assert len(await gateway.select("plays")) == 10


class TestStorage:
    async def test_existing_object_is_refused(self, gateway):
        await gateway.upload(AUDIO_BUCKET, "p1/1-a.mp3", b"first")
        with pytest.raises(StorageError) as exc:
            await gateway.upload(AUDIO_BUCKET, "p1/1-a.mp3", b"second")
        assert exc.value.status == 409
        assert gateway.object_path(AUDIO_BUCKET, "p1/1-a.mp3").read_bytes() == b"first"

    async def test_path_traversal_is_refused(self, gateway):
        with pytest.raises(StorageError):
            await gateway.upload(AUDIO_BUCKET, "../covers/x.jpg", b"data")
