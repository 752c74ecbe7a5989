import logging

from novel.models import SceneData, SceneEvent, SceneProgress

logger = logging.getLogger(__name__)


class EventCursor:
    """Position within one scene's event list.

    Invariant: 0 <= index <= len(events); index == len(events) is scene-end.
    """

    def __init__(self) -> None:
        self.scene: SceneData | None = None
        self.index = 0

    @property
    def length(self) -> int:
        return len(self.scene.events) if self.scene else 0

    def load(self, scene: SceneData) -> SceneEvent | None:
        self.scene = scene
        self.index = 0
        return self.current()

    def clear(self) -> None:
        self.scene = None
        self.index = 0

    def current(self) -> SceneEvent | None:
        if self.scene is None or self.index >= self.length:
            return None
        return self.scene.events[self.index]

    def advance(self) -> SceneEvent | None:
        if self.scene is None:
            return None
        self.index = min(self.index + 1, self.length)
        return self.current()

    def jump_to(self, index: int) -> SceneEvent | None:
        if self.scene is None or index < 0 or index > self.length:
            logger.warning(f"Jump to event {index} out of range [0, {self.length}], staying at {self.index}")
            return None
        self.index = index
        return self.current()

    def is_scene_end(self) -> bool:
        return self.index >= self.length

    def progress(self) -> SceneProgress:
        return SceneProgress(current=self.index, total=self.length)
