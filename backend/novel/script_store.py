import json
import logging
from pathlib import Path
from typing import Any, Literal

from pydantic import ValidationError

from novel.errors import MalformedContentError, SceneNotFoundError
from novel.models import CharacterData, Choice, EventType, SceneData, SceneEvent

logger = logging.getLogger(__name__)

DEFAULT_CHAPTER = "chapter1"
SCENE_ID_SEPARATOR = "_"

SceneFormat = Literal["structured", "legacy"]


def parse_scene_id(scene_id: str) -> tuple[str, str]:
    """Split a scene id into (chapter, scene).

    "chapter2_scene05" -> ("chapter2", "scene05"); an id without the
    separator lives in the default chapter: "intro" -> ("chapter1", "intro").
    Only the first two segments are used.
    """
    if SCENE_ID_SEPARATOR in scene_id:
        chapter, scene = scene_id.split(SCENE_ID_SEPARATOR)[:2]
        return chapter, scene
    return DEFAULT_CHAPTER, scene_id


def detect_format(raw: Any) -> SceneFormat:
    if not isinstance(raw, dict):
        raise MalformedContentError(f"Scene content must be an object, got {type(raw).__name__}")
    if raw.get("scene") and "script" in raw:
        return "structured"
    return "legacy"


def _convert_item(item: Any) -> SceneEvent:
    if not isinstance(item, dict):
        raise MalformedContentError(f"Script item must be an object, got {type(item).__name__}")
    kind = item.get("type")

    if kind == "dialogue":
        return SceneEvent(type=EventType.DIALOGUE, speaker=item.get("speaker"), text=item.get("text"))
    if kind == "choice":
        options = item.get("options") or []
        return SceneEvent(
            type=EventType.CHOICE,
            choices=[
                Choice(id=f"choice_{i}", text=opt.get("text", ""), next_scene=opt.get("next_scene"))
                for i, opt in enumerate(options)
            ],
        )
    if kind == "character_show":
        return SceneEvent(
            type=EventType.SHOW_CHARACTER,
            character=item.get("character"),
            position=item.get("position"),
        )
    if kind == "character_hide":
        return SceneEvent(type=EventType.HIDE_CHARACTER, character=item.get("character"))
    if kind == "background":
        return SceneEvent(type=EventType.CHANGE_BACKGROUND, background=item.get("asset"))
    if kind == "sound_effect":
        return SceneEvent(type=EventType.PLAY_SFX, sfx=item.get("asset"))

    # Unknown item types degrade to narration rather than failing the scene
    logger.warning(f"Unrecognized script item type '{kind}', converting to narrator dialogue")
    return SceneEvent(type=EventType.DIALOGUE, speaker="narrator", text=item.get("text") or "")


def convert_script(script: Any) -> list[SceneEvent]:
    if not isinstance(script, list):
        raise MalformedContentError("Scene 'script' must be a list")
    try:
        return [_convert_item(item) for item in script]
    except ValidationError as e:
        raise MalformedContentError(f"Invalid script item: {e}") from e


def normalize_scene(raw: Any) -> SceneData:
    """Map either on-disk scene shape to the canonical SceneData."""
    fmt = detect_format(raw)
    try:
        if fmt == "structured":
            meta = raw["scene"]
            return SceneData(
                id=meta["id"],
                title=meta.get("title", ""),
                background=meta.get("background"),
                music=meta.get("music"),
                events=convert_script(raw["script"]),
            )
        return SceneData.model_validate(raw)
    except (KeyError, TypeError, AttributeError, ValidationError) as e:
        raise MalformedContentError(f"Invalid {fmt} scene content: {e}") from e


def _parse_characters(data: Any) -> dict[str, CharacterData]:
    if isinstance(data, dict) and "characters" in data:
        records = data["characters"]
        return {
            char_id: CharacterData(
                id=char_id,
                name=char.get("name", char_id),
                color=char.get("color", "#ffffff"),
                avatar=char.get("avatar"),
            )
            for char_id, char in records.items()
        }
    # Array of self-identified records
    return {c["id"]: CharacterData(**c) for c in data}


class ScriptStore:
    """Resolves scene ids to canonical scenes and character ids to metadata."""

    def __init__(self, content_dir: Path | str) -> None:
        self.content_dir = Path(content_dir)
        self._characters: dict[str, CharacterData] | None = None

    def scene_path(self, scene_id: str) -> Path:
        """Path of a scene file; ids that would escape content_dir are not found."""
        chapter, scene = parse_scene_id(scene_id)
        path = self.content_dir / chapter / f"{scene}.json"
        if not path.resolve().is_relative_to(self.content_dir.resolve()):
            logger.warning(f"Scene id '{scene_id}' points outside the content directory")
            raise SceneNotFoundError(scene_id)
        return path

    def load_scene(self, scene_id: str) -> SceneData:
        path = self.scene_path(scene_id)
        if not path.is_file():
            raise SceneNotFoundError(scene_id, str(path))
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
        except (json.JSONDecodeError, UnicodeDecodeError) as e:
            raise MalformedContentError(f"Scene '{scene_id}' is not valid UTF-8 JSON: {e}") from e
        except OSError as e:
            raise MalformedContentError(f"Scene '{scene_id}' could not be read: {e}") from e
        return normalize_scene(raw)

    def load_characters(self) -> dict[str, CharacterData]:
        path = self.content_dir / "characters.json"
        try:
            self._characters = _parse_characters(json.loads(path.read_text(encoding="utf-8")))
            logger.info(f"Loaded {len(self._characters)} characters")
        except Exception as e:
            logger.error(f"Failed to load characters from '{path}': {e}")
            self._characters = {}
        return self._characters

    @property
    def characters(self) -> dict[str, CharacterData]:
        if self._characters is None:
            return self.load_characters()
        return self._characters

    def character(self, character_id: str) -> CharacterData:
        found = self.characters.get(character_id)
        if found is None:
            logger.warning(f"Unknown character '{character_id}', displaying raw id")
            return CharacterData(id=character_id, name=character_id)
        return found
