"""Tests for the library store."""

import uuid
from datetime import datetime, timezone

from duet.clients.gateway import eq, storage_path
from duet.db.schemas import Favorite, Play, Profile, Song
from duet.services.library import NOT_AUTHENTICATED, UploadFile, build_song_stats, filter_songs

PASSWORD = "secret1"


def _now():
    return datetime.now(timezone.utc)


def _profile(name):
    return Profile(id=uuid.uuid4(), user_id=uuid.uuid4(), display_name=name, created_at=_now())


def _song(title, uploaded_by):
    return Song(id=uuid.uuid4(), title=title, audio_url="u", uploaded_by=uploaded_by, created_at=_now())


def _play(song, by):
    return Play(id=uuid.uuid4(), song_id=song.id, played_by=by.id, played_at=_now())


class TestBuildSongStats:
    """Deriving per-song stats from the four collections."""

    def test_counts_and_flags(self):
        me, partner = _profile("Alex"), _profile("Sam")
        a, b = _song("A", me.id), _song("B", partner.id)
        plays = [_play(a, me), _play(a, me), _play(a, partner), _play(b, partner)]
        favorites = [
            Favorite(id=uuid.uuid4(), song_id=b.id, user_id=me.id, created_at=_now()),
            Favorite(id=uuid.uuid4(), song_id=a.id, user_id=partner.id, created_at=_now()),
        ]

        songs = build_song_stats([a, b], plays, favorites, [me, partner], me, partner)

        assert [s.title for s in songs] == ["A", "B"]
        assert (songs[0].my_plays, songs[0].partner_plays, songs[0].total_plays) == (2, 1, 3)
        assert (songs[1].my_plays, songs[1].partner_plays, songs[1].total_plays) == (0, 1, 1)
        # partner's favorite does not count as mine
        assert songs[0].is_favorite is False
        assert songs[1].is_favorite is True
        assert songs[1].uploader == partner

    def test_without_partner(self):
        me, stranger = _profile("Alex"), _profile("Other")
        a = _song("A", me.id)
        songs = build_song_stats([a], [_play(a, stranger)], [], [me], me, None)
        assert songs[0].partner_plays == 0
        assert songs[0].total_plays == 0

    def test_tab_filters(self):
        me, partner = _profile("Alex"), _profile("Sam")
        a, b = _song("A", me.id), _song("B", partner.id)
        fav = Favorite(id=uuid.uuid4(), song_id=b.id, user_id=me.id, created_at=_now())
        songs = build_song_stats([a, b], [], [fav], [me, partner], me, partner)

        assert [s.title for s in filter_songs(songs, "all", me, partner)] == ["A", "B"]
        assert [s.title for s in filter_songs(songs, "mine", me, partner)] == ["A"]
        assert [s.title for s in filter_songs(songs, "theirs", me, partner)] == ["B"]
        assert [s.title for s in filter_songs(songs, "favorites", me, partner)] == ["B"]
        assert filter_songs(songs, "theirs", me, None) == []


class TestLoad:
    async def test_newest_first_with_stats(self, library, gateway, pair, add_song):
        me, partner = pair
        old = await add_song("Old", me.id)
        await add_song("New", partner.id)
        await gateway.insert("plays", {"song_id": old["id"], "played_by": partner.id})

        songs = await library.load()

        assert [s.title for s in songs] == ["New", "Old"]
        assert songs[1].partner_plays == 1
        assert songs[1].uploader.display_name == "Alex"
        assert library.loading is False

    async def test_no_profile_no_fetch(self, library):
        assert await library.load() == []
        assert library.loading is True

    async def test_superseded_load_is_discarded(self, library, gateway, manager, pair, add_song, monkeypatch):
        me, _ = pair
        await add_song("A", me.id)
        original = gateway.select

        async def identity_changes_mid_fetch(table, *args, **kwargs):
            rows = await original(table, *args, **kwargs)
            if table == "songs":
                manager.generation += 1
            return rows

        monkeypatch.setattr(gateway, "select", identity_changes_mid_fetch)

        assert await library.load() == []
        assert library.songs == []
        assert library.loading is True


class TestOptimisticWrites:
    async def test_total_plays_stays_consistent(self, library, pair, add_song):
        me, _ = pair
        a = await add_song("A", me.id)
        b = await add_song("B", me.id)
        await library.load()

        for song_id in (a["id"], b["id"], a["id"], a["id"]):
            await library.record_play(song_id)

        for song in library.songs:
            assert song.total_plays == song.my_plays + song.partner_plays
        assert library.get(a["id"]).my_plays == 3

        # server agrees after a full reload
        reloaded = {s.id: s for s in await library.load()}
        assert reloaded[a["id"]].my_plays == 3
        assert reloaded[b["id"]].my_plays == 1

    async def test_toggle_favorite_twice_restores(self, library, pair, add_song):
        me, _ = pair
        a = await add_song("A", me.id)
        await library.load()

        assert await library.toggle_favorite(a["id"]) is True
        assert library.get(a["id"]).is_favorite is True
        assert (await library.load())[0].is_favorite is True

        assert await library.toggle_favorite(a["id"]) is False
        assert library.get(a["id"]).is_favorite is False
        assert (await library.load())[0].is_favorite is False

    async def test_toggle_unknown_song(self, library, pair):
        assert await library.toggle_favorite(uuid.uuid4()) is None

    async def test_failed_write_is_kept_until_reload(self, library, gateway, pair, add_song):
        me, _ = pair
        a = await add_song("A", me.id)
        await library.load()
        # removed server-side behind the store's back; the play insert now violates the FK
        await gateway.delete("songs", [eq("id", a["id"])])

        await library.record_play(a["id"])

        assert library.get(a["id"]).my_plays == 1
        assert [(f.operation, f.song_id) for f in library.failed_writes] == [("record_play", a["id"])]

        assert await library.load() == []
        assert library.failed_writes == []


class TestDelete:
    async def test_uploader_can_delete(self, library, gateway, pair, add_song):
        me, _ = pair
        a = await add_song("A", me.id)
        await library.load()

        assert await library.delete(a["id"]) is True
        assert library.get(a["id"]) is None
        assert await gateway.select("songs") == []

    async def test_partner_cannot_delete(self, library, gateway, pair, add_song):
        _, partner = pair
        b = await add_song("B", partner.id)
        await library.load()

        assert await library.delete(b["id"]) is False
        assert library.get(b["id"]) is not None
        assert len(await gateway.select("songs")) == 1

    async def test_unknown_song(self, library, pair):
        assert await library.delete(uuid.uuid4()) is False


class TestUpload:
    async def test_upload_without_cover(self, library, gateway, pair, tmp_path):
        me, _ = pair
        result = await library.upload("Test", UploadFile("test.mp3", b"ID3audio", "audio/mpeg"))

        assert result.success is True
        assert result.error is None
        assert len(library.songs) == 1
        song = library.songs[0]
        assert song.title == "Test"
        assert song.cover_url is None
        assert song.my_plays == 0
        assert song.is_favorite is False
        assert song.uploaded_by == me.id
        assert song.audio_url.startswith("http://testserver/storage/audio/")

        stored = list((tmp_path / "storage" / "audio" / str(me.id)).iterdir())
        assert [p.read_bytes() for p in stored] == [b"ID3audio"]
        assert stored[0].name.endswith("-test.mp3")

    async def test_upload_with_cover(self, library, pair):
        result = await library.upload(
            "Covered",
            UploadFile("a.mp3", b"audio"),
            UploadFile("cover.jpg", b"jpeg", "image/jpeg"),
        )
        assert result.success is True
        assert "/storage/covers/" in library.songs[0].cover_url

    async def test_cover_failure_is_not_fatal(self, library, pair, clock, tmp_path):
        me, _ = pair
        # an existing object at the cover path makes the cover upload fail
        taken = tmp_path / "storage" / "covers" / storage_path(me.id, "cover.jpg", clock.ms())
        taken.parent.mkdir(parents=True)
        taken.write_bytes(b"old")

        result = await library.upload("No Cover", UploadFile("a.mp3", b"audio"), UploadFile("cover.jpg", b"new"))

        assert result.success is True
        assert library.songs[0].title == "No Cover"
        assert library.songs[0].cover_url is None

    async def test_audio_failure_aborts(self, library, gateway, pair, clock, tmp_path):
        me, _ = pair
        taken = tmp_path / "storage" / "audio" / storage_path(me.id, "a.mp3", clock.ms())
        taken.parent.mkdir(parents=True)
        taken.write_bytes(b"old")

        result = await library.upload("Dup", UploadFile("a.mp3", b"audio"))

        assert result.success is False
        assert result.error == "The resource already exists"
        assert await gateway.select("songs") == []

    async def test_requires_profile(self, library):
        result = await library.upload("Test", UploadFile("a.mp3", b"audio"))
        assert result.success is False
        assert result.error == NOT_AUTHENTICATED
