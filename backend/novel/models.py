from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


class EventType(str, Enum):
    DIALOGUE = "dialogue"
    CHOICE = "choice"
    SHOW_CHARACTER = "showCharacter"
    HIDE_CHARACTER = "hideCharacter"
    CHANGE_BACKGROUND = "changeBackground"
    PLAY_MUSIC = "playMusic"
    PLAY_SFX = "playSfx"
    END = "end"


class EngineStatus(str, Enum):
    UNINITIALIZED = "uninitialized"
    INITIALIZED = "initialized"
    PLAYING = "playing"
    PAUSED = "paused"
    ENDED = "ended"


class CamelModel(BaseModel):
    """Base for records whose wire/save field names are camelCase."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class Choice(CamelModel):
    id: str
    text: str = ""
    next_scene: str | None = None
    condition: str | None = None  # carried through, never evaluated


class SceneEvent(CamelModel):
    type: EventType
    speaker: str | None = None
    text: str | None = None
    character: str | None = None
    position: Literal["left", "center", "right"] | None = None
    background: str | None = None
    background_change: str | None = None  # dialogue only: applied before the line is shown
    music: str | None = None
    sfx: str | None = None
    choices: list[Choice] | None = None
    next_scene: str | None = None


class SceneData(CamelModel):
    model_config = ConfigDict(frozen=True)

    id: str
    title: str = ""
    background: str | None = None
    music: str | None = None
    events: list[SceneEvent] = []


class CharacterData(BaseModel):
    id: str
    name: str
    color: str = "#ffffff"
    avatar: str | None = None


class VolumeSettings(BaseModel):
    master: float = Field(default=0.8, ge=0.0, le=1.0)
    music: float = Field(default=0.7, ge=0.0, le=1.0)
    sfx: float = Field(default=0.8, ge=0.0, le=1.0)


class DisplaySettings(CamelModel):
    fullscreen: bool = False
    text_speed: int = Field(default=50, ge=10, le=100)


class GameSettings(BaseModel):
    volume: VolumeSettings = Field(default_factory=VolumeSettings)
    display: DisplaySettings = Field(default_factory=DisplaySettings)


class VolumePatch(BaseModel):
    master: float | None = None
    music: float | None = None
    sfx: float | None = None


class DisplayPatch(CamelModel):
    fullscreen: bool | None = None
    text_speed: int | None = None


class SettingsPatch(BaseModel):
    """Partial settings update; only fields that were sent are applied."""

    volume: VolumePatch | None = None
    display: DisplayPatch | None = None


class GameProgress(CamelModel):
    completed_scenes: list[str] = []
    unlocked_content: list[str] = []
    play_time: float = 0.0  # seconds
    last_save_time: float = 0.0  # epoch seconds, 0 = never saved


class GameState(CamelModel):
    current_scene: str = ""
    current_event_index: int = 0
    current_dialogue: str = ""
    current_speaker: str = ""
    characters: list[str] = []
    background: str = ""
    current_choices: list[Choice] = []
    is_playing: bool = False
    is_paused: bool = False
    is_loading: bool = False
    settings: GameSettings = Field(default_factory=GameSettings)
    progress: GameProgress = Field(default_factory=GameProgress)


class SavedGame(CamelModel):
    """The slice of an autosave blob that is restored on load.

    Dialogue, speaker and choices are deliberately absent: they are
    re-derived by re-entering the scene at the saved index.
    """

    current_scene: str
    current_event_index: int = 0
    characters: list[str] = []
    background: str = ""
    progress: GameProgress = Field(default_factory=GameProgress)
    timestamp: str | None = None
    version: str | None = None


class SceneProgress(BaseModel):
    current: int
    total: int


class EngineState(CamelModel):
    status: EngineStatus
    is_initialized: bool
    current_scene: str | None = None
    is_playing: bool
    is_paused: bool


class ChoiceRequest(CamelModel):
    choice_id: str


class SessionMessage(CamelModel):
    type: str  # "new", "continue", "next", "choice", "pause", "resume", "save", "settings"
    choice_id: str | None = None
    settings: dict | None = None
