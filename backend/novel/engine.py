import asyncio
import logging
import time
from typing import Any, Callable

from novel.audio import AudioBackend
from novel.config import DEFAULT_FIRST_SCENE
from novel.cursor import EventCursor
from novel.errors import NoSaveError
from novel.models import (
    CharacterData,
    EngineState,
    EngineStatus,
    EventType,
    GameSettings,
    SceneData,
    SceneEvent,
    SceneProgress,
    SettingsPatch,
)
from novel.persistence import SaveService
from novel.script_store import ScriptStore
from novel.session import SessionStore

logger = logging.getLogger(__name__)


class NarrativeEngine:
    """Interprets scene events into session state and resolves player choices.

    Status flow: uninitialized -> initialized -> playing <-> paused -> ended.
    Every public mutating call runs under one asyncio.Lock, so a request that
    arrives while another is in flight waits its turn instead of interleaving.
    """

    def __init__(
        self,
        scripts: ScriptStore,
        saves: SaveService,
        session: SessionStore,
        audio: AudioBackend,
        first_scene_id: str = DEFAULT_FIRST_SCENE,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.scripts = scripts
        self.saves = saves
        self.session = session
        self.audio = audio
        self.first_scene_id = first_scene_id
        self.cursor = EventCursor()
        self.status = EngineStatus.UNINITIALIZED
        self._clock = clock
        self._lock = asyncio.Lock()
        self._scene_end_handled = False
        self._play_started: float | None = None

    # ------------------------------------------------------------------
    # Collaborator helpers
    # ------------------------------------------------------------------

    async def _audio(self, action: str, *args: Any) -> None:
        try:
            await getattr(self.audio, action)(*args)
        except Exception as e:
            logger.warning(f"Audio {action}{args} failed, continuing: {e}")

    def _push_volumes(self, settings: GameSettings) -> None:
        try:
            self.audio.set_master_volume(settings.volume.master)
            self.audio.set_music_volume(settings.volume.music)
            self.audio.set_sfx_volume(settings.volume.sfx)
        except Exception as e:
            logger.warning(f"Failed to push volume settings to audio: {e}")

    # ------------------------------------------------------------------
    # Play time
    # ------------------------------------------------------------------

    def _accrue_play_time(self, running: bool = True) -> None:
        if self._play_started is None:
            return
        now = self._clock()
        progress = self.session.state.progress
        self.session.update(
            progress=progress.model_copy(update={"play_time": progress.play_time + (now - self._play_started)})
        )
        self._play_started = now if running else None

    def _set_playing(self) -> None:
        self.status = EngineStatus.PLAYING
        self._play_started = self._clock()
        self.session.update(is_playing=True, is_paused=False)

    def _stop_playing(self, status: EngineStatus) -> None:
        self._accrue_play_time(running=False)
        self.status = status
        self.session.update(is_playing=False, is_paused=False)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def _initialize(self) -> None:
        if self.status != EngineStatus.UNINITIALIZED:
            return
        self._push_volumes(self.session.state.settings)
        self.status = EngineStatus.INITIALIZED
        logger.info("Narrative engine initialized")

    async def initialize(self) -> None:
        async with self._lock:
            await self._initialize()

    async def load_settings(self) -> GameSettings:
        async with self._lock:
            settings = await self.saves.load_settings()
            self.session.replace_settings(settings)
            if self.status != EngineStatus.UNINITIALIZED:
                self._push_volumes(settings)
            return settings

    async def start_new_game(self) -> None:
        async with self._lock:
            await self._initialize()
            self.cursor.clear()
            self._play_started = None
            self.session.reset_game()
            self._set_playing()
            try:
                await self._load_scene(self.first_scene_id)
            except Exception:
                self._stop_playing(EngineStatus.INITIALIZED)
                raise
            logger.info("New game started")

    async def load_game(self) -> None:
        async with self._lock:
            await self._initialize()
            self.session.update(is_loading=True)
            try:
                await self._restore()
            finally:
                self.session.update(is_loading=False)

    async def continue_game(self) -> None:
        await self.load_game()

    async def _restore(self) -> None:
        saved = await self.saves.load()
        if saved is None or not saved.current_scene:
            raise NoSaveError()

        # Fetch first so a missing or broken scene leaves the live session alone
        scene = await asyncio.to_thread(self.scripts.load_scene, saved.current_scene)

        self.cursor.clear()
        self._play_started = None
        self.session.reset_game()
        self.session.update(
            current_scene=saved.current_scene,
            characters=list(saved.characters),
            background=saved.background,
            progress=saved.progress,
            is_loading=True,
        )
        self._set_playing()
        try:
            await self._enter_scene(saved.current_scene, scene)
        except Exception:
            self._stop_playing(EngineStatus.INITIALIZED)
            raise

        if self.cursor.jump_to(saved.current_event_index) is None and self.cursor.index != saved.current_event_index:
            logger.warning(
                f"Saved position {saved.current_event_index} no longer fits scene '{saved.current_scene}', "
                f"resuming from the start"
            )

        # The saved stage is authoritative over whatever index 0 just did
        fields: dict[str, Any] = {
            "characters": list(saved.characters),
            "current_dialogue": "",
            "current_speaker": "",
            "current_choices": [],
            "current_event_index": self.cursor.index,
        }
        if saved.background:
            fields["background"] = saved.background
        self.session.update(**fields)

        event = self.cursor.current()
        if event is not None:
            await self._execute(event)
        logger.info(f"Game loaded at scene '{saved.current_scene}', event {self.cursor.index}")

    async def pause(self) -> None:
        async with self._lock:
            if self.status != EngineStatus.PLAYING:
                return
            self._accrue_play_time(running=False)
            self.status = EngineStatus.PAUSED
            self.session.update(is_paused=True)
            await self._audio("pause_music")

    async def resume(self) -> None:
        async with self._lock:
            if self.status != EngineStatus.PAUSED:
                return
            self.status = EngineStatus.PLAYING
            self._play_started = self._clock()
            self.session.update(is_paused=False)
            await self._audio("resume_music")

    async def dispose(self) -> None:
        async with self._lock:
            await self._audio("stop_music")
            self.cursor.clear()
            self._play_started = None
            self.status = EngineStatus.UNINITIALIZED

    # ------------------------------------------------------------------
    # Scenes and events
    # ------------------------------------------------------------------

    async def _load_scene(self, scene_id: str) -> None:
        scene = await asyncio.to_thread(self.scripts.load_scene, scene_id)
        await self._enter_scene(scene_id, scene)

    async def _enter_scene(self, scene_id: str, scene: SceneData) -> None:
        self.cursor.load(scene)
        self._scene_end_handled = False

        fields: dict[str, Any] = {"current_scene": scene_id, "current_event_index": 0}
        if scene.background:
            fields["background"] = scene.background
        self.session.update(**fields)

        if scene.music:
            await self._audio("play_music", scene.music)

        logger.info(f"Scene loaded: {scene_id} ({self.cursor.length} events)")
        await self._process_current()

    async def load_scene(self, scene_id: str) -> None:
        async with self._lock:
            await self._load_scene(scene_id)

    async def _process_current(self) -> None:
        event = self.cursor.current()
        if event is None:
            await self._handle_scene_end()
            return
        await self._execute(event)

    async def _execute(self, event: SceneEvent) -> None:
        state = self.session.state
        fields: dict[str, Any] = {"current_event_index": self.cursor.index}

        if event.type == EventType.DIALOGUE:
            if event.background_change:
                self.session.update(background=event.background_change)
            fields["current_dialogue"] = event.text or ""
            fields["current_speaker"] = event.speaker or "narrator"
        elif event.type == EventType.CHOICE:
            fields["current_choices"] = list(event.choices or [])
        elif event.type == EventType.SHOW_CHARACTER:
            if event.character and event.character not in state.characters:
                fields["characters"] = [*state.characters, event.character]
        elif event.type == EventType.HIDE_CHARACTER:
            if event.character:
                fields["characters"] = [c for c in state.characters if c != event.character]
        elif event.type == EventType.CHANGE_BACKGROUND:
            if event.background:
                fields["background"] = event.background
        elif event.type == EventType.PLAY_MUSIC:
            if event.music:
                await self._audio("play_music", event.music)
        elif event.type == EventType.PLAY_SFX:
            if event.sfx:
                await self._audio("play_sfx", event.sfx)
        elif event.type == EventType.END:
            self._mark_completed(state.current_scene)
            self._stop_playing(EngineStatus.ENDED)
            logger.info("Game ended")

        self.session.update(**fields)

    async def _handle_scene_end(self) -> None:
        if self._scene_end_handled:
            return
        self._scene_end_handled = True
        scene_id = self.session.state.current_scene
        logger.info(f"Scene ended: {scene_id}")
        self._mark_completed(scene_id)
        await self._save()

    def _mark_completed(self, scene_id: str) -> None:
        progress = self.session.state.progress
        if not scene_id or scene_id in progress.completed_scenes:
            return
        self.session.update(
            progress=progress.model_copy(update={"completed_scenes": [*progress.completed_scenes, scene_id]})
        )

    async def next_event(self) -> None:
        async with self._lock:
            if self.status != EngineStatus.PLAYING:
                return
            event = self.cursor.advance()
            if event is None:
                self.session.update(current_event_index=self.cursor.index)
                await self._handle_scene_end()
            else:
                await self._execute(event)

    async def make_choice(self, choice_id: str) -> bool:
        """Resolve a choice on the current choice event.

        Returns False, with no state change, when there is no such choice.
        """
        async with self._lock:
            if self.status != EngineStatus.PLAYING:
                return False
            event = self.cursor.current()
            if event is None or event.type != EventType.CHOICE:
                return False
            choice = next((c for c in event.choices or [] if c.id == choice_id), None)
            if choice is None:
                logger.warning(f"Choice '{choice_id}' not offered by the current event")
                return False

            previous = self.session.state.current_choices
            self.session.update(current_choices=[])
            if choice.next_scene:
                try:
                    await self._load_scene(choice.next_scene)
                except Exception:
                    self.session.update(current_choices=previous)
                    raise
            else:
                self.cursor.advance()
                await self._process_current()
            return True

    # ------------------------------------------------------------------
    # Saving, settings, progress
    # ------------------------------------------------------------------

    async def _save(self) -> bool:
        if not self.session.state.current_scene:
            logger.warning("Nothing to save: no scene loaded")
            return False
        self._accrue_play_time()
        self.session.update(current_event_index=self.cursor.index)
        state = self.session.state
        stamped = state.model_copy(
            update={"progress": state.progress.model_copy(update={"last_save_time": time.time()})}
        )
        ok = await self.saves.save(stamped)
        if ok:
            self.session.update(progress=stamped.progress)
        return ok

    async def save_game(self) -> bool:
        async with self._lock:
            return await self._save()

    async def delete_save(self) -> bool:
        async with self._lock:
            return await self.saves.delete_save()

    async def update_settings(self, changes: dict[str, Any]) -> GameSettings:
        """Merge a partial settings dict; raises ValidationError on out-of-range values."""
        async with self._lock:
            patch = SettingsPatch.model_validate(changes)
            current = self.session.state.settings.model_dump()
            for section in ("volume", "display"):
                sent = getattr(patch, section)
                if sent is not None:
                    current[section].update(sent.model_dump(exclude_unset=True, exclude_none=True))
            settings = GameSettings.model_validate(current)
            self.session.replace_settings(settings)
            self._push_volumes(settings)
            await self.saves.save_settings(settings)
            return settings

    async def unlock(self, content_id: str) -> None:
        async with self._lock:
            progress = self.session.state.progress
            if content_id in progress.unlocked_content:
                return
            self.session.update(
                progress=progress.model_copy(update={"unlocked_content": [*progress.unlocked_content, content_id]})
            )

    # ------------------------------------------------------------------
    # Read-only views
    # ------------------------------------------------------------------

    def character(self, character_id: str) -> CharacterData:
        return self.scripts.character(character_id)

    def scene_progress(self) -> SceneProgress:
        return self.cursor.progress()

    def get_state(self) -> EngineState:
        return EngineState(
            status=self.status,
            is_initialized=self.status != EngineStatus.UNINITIALIZED,
            current_scene=self.session.state.current_scene or None,
            is_playing=self.status in (EngineStatus.PLAYING, EngineStatus.PAUSED),
            is_paused=self.status == EngineStatus.PAUSED,
        )
