import json
from unittest.mock import AsyncMock, MagicMock

import pytest

from novel.errors import PersistenceError
from novel.models import GameProgress, GameSettings, GameState, VolumeSettings
from novel.persistence import AUTOSAVE_KEY, SETTINGS_KEY, FileBlobStore, SaveService


def make_state() -> GameState:
    return GameState(
        current_scene="chapter1_scene02",
        current_event_index=3,
        current_dialogue="Welcome",
        current_speaker="bob",
        characters=["alice", "bob"],
        background="bg2.jpg",
        is_playing=True,
        progress=GameProgress(completed_scenes=["chapter1_scene01"], play_time=42.0),
    )


def broken_blobs() -> MagicMock:
    blobs = MagicMock()
    blobs.save_blob = AsyncMock(side_effect=PersistenceError("disk full"))
    blobs.load_blob = AsyncMock(side_effect=PersistenceError("disk gone"))
    blobs.delete_blob = AsyncMock(side_effect=PersistenceError("read-only"))
    return blobs


async def test_file_blob_store_layout(blobs, tmp_path):
    await blobs.save_blob(AUTOSAVE_KEY, "{}")
    await blobs.save_blob(SETTINGS_KEY, "{}")
    await blobs.save_blob("scratch", "{}")
    assert (tmp_path / "data" / "saves" / "autosave.json").is_file()
    assert (tmp_path / "data" / "settings" / "settings.json").is_file()
    assert (tmp_path / "data" / "scratch.json").is_file()


async def test_file_blob_store_round_trip(blobs):
    await blobs.save_blob("scratch", '{"a": 1}')
    assert await blobs.load_blob("scratch") == '{"a": 1}'
    await blobs.delete_blob("scratch")
    assert await blobs.load_blob("scratch") is None


async def test_file_blob_store_leaves_no_temp_file(blobs):
    await blobs.save_blob(AUTOSAVE_KEY, "{}")
    assert list(blobs.path_for(AUTOSAVE_KEY).parent.glob("*.tmp")) == []


async def test_file_blob_store_delete_missing_is_ok(blobs):
    await blobs.delete_blob("never-written")


async def test_save_writes_camel_case_blob_with_stamp(saves, blobs):
    assert await saves.save(make_state()) is True
    data = json.loads(blobs.path_for(AUTOSAVE_KEY).read_text())
    assert data["currentScene"] == "chapter1_scene02"
    assert data["currentEventIndex"] == 3
    assert data["progress"]["completedScenes"] == ["chapter1_scene01"]
    assert data["version"] == "1.0.0"
    assert "timestamp" in data


async def test_save_then_load_round_trip(saves):
    await saves.save(make_state())
    saved = await saves.load()
    assert saved.current_scene == "chapter1_scene02"
    assert saved.current_event_index == 3
    assert saved.characters == ["alice", "bob"]
    assert saved.background == "bg2.jpg"
    assert saved.progress.play_time == 42.0


async def test_load_tolerates_unknown_fields(saves, blobs):
    await blobs.save_blob(AUTOSAVE_KEY, json.dumps({
        "currentScene": "intro",
        "currentEventIndex": 1,
        "weather": "rain",
    }))
    saved = await saves.load()
    assert saved.current_scene == "intro"


async def test_load_absent_save(saves):
    assert await saves.load() is None
    assert await saves.has_save() is False


async def test_load_corrupt_save(saves, blobs):
    await blobs.save_blob(AUTOSAVE_KEY, "{not json")
    assert await saves.load() is None


async def test_delete_save_is_idempotent(saves):
    await saves.save(make_state())
    assert await saves.has_save() is True
    assert await saves.delete_save() is True
    assert await saves.delete_save() is True
    assert await saves.has_save() is False


async def test_failures_are_reported_not_raised():
    saves = SaveService(broken_blobs())
    assert await saves.save(make_state()) is False
    assert await saves.load() is None
    assert await saves.delete_save() is False
    assert await saves.save_settings(GameSettings()) is False


async def test_settings_round_trip(saves, blobs):
    custom = GameSettings(volume=VolumeSettings(master=0.3, music=0.2, sfx=0.1))
    assert await saves.save_settings(custom) is True
    data = json.loads(blobs.path_for(SETTINGS_KEY).read_text())
    assert "timestamp" in data
    assert data["display"]["textSpeed"] == 50
    loaded = await saves.load_settings()
    assert loaded.volume.master == 0.3


async def test_settings_default_when_absent(saves):
    assert await saves.load_settings() == GameSettings()


@pytest.mark.parametrize("raw", ["{broken", '{"volume": {"master": 7}}'])
async def test_settings_default_on_bad_blob(saves, blobs, raw):
    await blobs.save_blob(SETTINGS_KEY, raw)
    settings = await saves.load_settings()
    assert settings.volume.model_dump() == {"master": 0.8, "music": 0.7, "sfx": 0.8}
    assert settings.display.model_dump(by_alias=True) == {"fullscreen": False, "textSpeed": 50}


async def test_settings_default_on_io_failure():
    settings = await SaveService(broken_blobs()).load_settings()
    assert settings == GameSettings()
