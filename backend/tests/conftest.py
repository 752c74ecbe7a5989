import os

# Keep the default app instance away from the real data dir during imports
os.environ.setdefault("NOVEL_DATA_DIR", "data-tests")

import pytest
import json
from pathlib import Path
from unittest.mock import MagicMock

from novel.audio import CueAudio
from novel.engine import NarrativeEngine
from novel.persistence import FileBlobStore, SaveService
from novel.script_store import ScriptStore
from novel.session import SessionStore

REPO_CONTENT = Path(__file__).parent.parent.parent / "content"


def write_json(path: Path, data) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(data))
    return path


class FakeClock:
    def __init__(self, start: float = 100.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def tick(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture
def content_dir(tmp_path):
    root = tmp_path / "content"
    write_json(root / "characters.json", {
        "characters": {
            "alice": {"name": "Alice", "color": "#ff0000", "avatar": "alice.png"},
            "bob": {"name": "Bob", "color": "#00ff00"},
        }
    })
    # structured: 5 events, choice at index 2
    write_json(root / "chapter1" / "scene01.json", {
        "scene": {"id": "scene01", "title": "Opening", "background": "bg1.jpg", "music": "theme.mp3"},
        "script": [
            {"type": "dialogue", "speaker": "narrator", "text": "Hello"},
            {"type": "character_show", "character": "alice", "position": "left"},
            {"type": "choice", "options": [
                {"text": "A", "next_scene": "chapter1_scene02"},
                {"text": "B"},
            ]},
            {"type": "dialogue", "speaker": "alice", "text": "You stayed."},
            {"type": "character_hide", "character": "alice"},
        ],
    })
    # legacy: dialogue with merged background, sfx, end
    write_json(root / "chapter1" / "scene02.json", {
        "id": "scene02",
        "title": "Second",
        "background": "bg2.jpg",
        "music": "second.mp3",
        "events": [
            {"type": "dialogue", "speaker": "bob", "text": "Welcome", "backgroundChange": "bg_merge.jpg"},
            {"type": "playSfx", "sfx": "door.wav"},
            {"type": "end"},
        ],
    })
    write_json(root / "chapter1" / "empty.json", {"id": "empty", "title": "Nothing", "events": []})
    write_json(root / "chapter1" / "intro.json", {
        "scene": {"id": "intro", "title": "Intro"},
        "script": [
            {"type": "cutscene", "text": "The sky cracks open."},
            {"type": "background", "asset": "sky.jpg"},
            {"type": "sound_effect", "asset": "thunder.wav"},
        ],
    })
    write_json(root / "chapter1" / "choicefirst.json", {
        "id": "choicefirst",
        "title": "Choice first",
        "events": [
            {"type": "choice", "choices": [
                {"id": "go", "text": "Go", "nextScene": "chapter1_scene02"},
                {"id": "again", "text": "Again", "nextScene": "choicefirst"},
            ]},
        ],
    })
    write_json(root / "chapter1" / "missing.json", {
        "id": "missing",
        "title": "Dead end",
        "events": [
            {"type": "choice", "choices": [{"id": "lost", "text": "Lost", "nextScene": "chapter9_nowhere"}]},
        ],
    })
    write_json(root / "chapter2" / "scene05.json", {
        "id": "scene05",
        "title": "Chapter two",
        "events": [{"type": "playMusic", "music": "ch2.mp3"}, {"type": "dialogue", "text": "Later."}],
    })
    (root / "chapter1" / "broken.json").write_text("{not json")
    return root


@pytest.fixture
def scripts(content_dir):
    return ScriptStore(content_dir)


@pytest.fixture
def blobs(tmp_path):
    return FileBlobStore(tmp_path / "data")


@pytest.fixture
def saves(blobs):
    return SaveService(blobs)


@pytest.fixture
def audio():
    return MagicMock(spec=CueAudio)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def session():
    return SessionStore()


@pytest.fixture
def engine(scripts, saves, session, audio, clock):
    return NarrativeEngine(
        scripts=scripts,
        saves=saves,
        session=session,
        audio=audio,
        first_scene_id="chapter1_scene01",
        clock=clock,
    )
