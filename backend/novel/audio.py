import logging
from collections import deque
from typing import Any, Protocol

logger = logging.getLogger(__name__)

# Oldest cues are dropped once this many are waiting for a client to drain them
MAX_PENDING_CUES = 256


class AudioBackend(Protocol):
    async def play_music(self, ref: str, fade_in: bool = True) -> None: ...

    async def stop_music(self) -> None: ...

    async def play_sfx(self, ref: str) -> None: ...

    async def pause_music(self) -> None: ...

    async def resume_music(self) -> None: ...

    def set_master_volume(self, volume: float) -> None: ...

    def set_music_volume(self, volume: float) -> None: ...

    def set_sfx_volume(self, volume: float) -> None: ...


def _clamp(volume: float) -> float:
    return max(0.0, min(1.0, volume))


class CueAudio:
    """Audio collaborator for a remote presentation layer.

    Nothing is played server-side: every request becomes a cue dict that the
    session channel drains and forwards to the client, which owns mixing and
    fades. A new play_music supersedes whatever fade the client is running.
    """

    def __init__(self) -> None:
        self.current_music: str | None = None
        self.music_paused = False
        self.master_volume = 1.0
        self.music_volume = 0.7
        self.sfx_volume = 0.8
        self._cues: deque[dict[str, Any]] = deque(maxlen=MAX_PENDING_CUES)

    def _cue(self, action: str, **fields: Any) -> None:
        self._cues.append({"action": action, **fields})

    def drain(self) -> list[dict[str, Any]]:
        cues = list(self._cues)
        self._cues.clear()
        return cues

    def effective_music_volume(self) -> float:
        return self.master_volume * self.music_volume

    def effective_sfx_volume(self) -> float:
        return self.master_volume * self.sfx_volume

    async def play_music(self, ref: str, fade_in: bool = True) -> None:
        if ref == self.current_music and not self.music_paused:
            return
        self.current_music = ref
        self.music_paused = False
        self._cue("playMusic", ref=ref, fadeIn=fade_in, volume=self.effective_music_volume())

    async def stop_music(self) -> None:
        self.current_music = None
        self.music_paused = False
        self._cue("stopMusic")

    async def play_sfx(self, ref: str) -> None:
        self._cue("playSfx", ref=ref, volume=self.effective_sfx_volume())

    async def pause_music(self) -> None:
        if self.current_music and not self.music_paused:
            self.music_paused = True
            self._cue("pauseMusic")

    async def resume_music(self) -> None:
        if self.current_music and self.music_paused:
            self.music_paused = False
            self._cue("resumeMusic")

    def _volume_changed(self) -> None:
        self._cue(
            "volume",
            music=self.effective_music_volume(),
            sfx=self.effective_sfx_volume(),
        )

    def set_master_volume(self, volume: float) -> None:
        self.master_volume = _clamp(volume)
        self._volume_changed()

    def set_music_volume(self, volume: float) -> None:
        self.music_volume = _clamp(volume)
        self._volume_changed()

    def set_sfx_volume(self, volume: float) -> None:
        self.sfx_volume = _clamp(volume)
        self._volume_changed()
