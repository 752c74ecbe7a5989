import pytest

from novel.models import GameSettings, GameState, VolumeSettings
from novel.session import SessionStore


def test_default_state():
    state = SessionStore().state
    assert state == GameState()
    assert state.settings.volume.master == 0.8
    assert state.settings.display.text_speed == 50
    assert state.characters == []


def test_update_notifies_subscribers():
    store = SessionStore()
    seen = []
    store.subscribe(seen.append)
    store.update(current_dialogue="Hi", current_speaker="alice")
    assert len(seen) == 1
    assert seen[0].current_dialogue == "Hi"
    assert seen[0].current_speaker == "alice"


def test_unsubscribe():
    store = SessionStore()
    seen = []
    unsubscribe = store.subscribe(seen.append)
    unsubscribe()
    store.update(background="bg.jpg")
    assert seen == []


def test_failing_listener_does_not_block_update():
    store = SessionStore()
    seen = []

    def broken(_state):
        raise RuntimeError("listener bug")

    store.subscribe(broken)
    store.subscribe(seen.append)
    store.update(background="bg.jpg")
    assert store.state.background == "bg.jpg"
    assert len(seen) == 1


def test_snapshot_is_detached():
    store = SessionStore()
    store.update(characters=["alice"])
    snap = store.snapshot()
    snap.characters.append("bob")
    assert store.state.characters == ["alice"]


def test_update_rejects_unknown_field():
    with pytest.raises(AttributeError):
        SessionStore().update(current_mood="tense")


def test_reset_preserves_settings():
    store = SessionStore()
    custom = GameSettings(volume=VolumeSettings(master=0.2))
    store.replace_settings(custom)
    store.update(current_scene="chapter1_scene02", characters=["alice"], is_playing=True)
    store.reset_game()
    assert store.state.current_scene == ""
    assert store.state.characters == []
    assert store.state.is_playing is False
    assert store.state.settings.volume.master == 0.2


def test_camel_case_serialization():
    dumped = SessionStore().state.model_dump(by_alias=True)
    for key in ("currentScene", "currentEventIndex", "currentDialogue", "currentSpeaker",
                "currentChoices", "isPlaying", "isPaused", "isLoading"):
        assert key in dumped
    assert dumped["settings"]["display"]["textSpeed"] == 50
    assert set(dumped["progress"]) == {"completedScenes", "unlockedContent", "playTime", "lastSaveTime"}
