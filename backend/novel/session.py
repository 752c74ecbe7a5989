import logging
from typing import Callable

from novel.models import GameSettings, GameState

logger = logging.getLogger(__name__)

Listener = Callable[[GameState], None]


class SessionStore:
    """Owns the single mutable GameState.

    The narrative engine is the only writer; everything else reads a
    snapshot or subscribes for snapshots after each update.
    """

    def __init__(self, state: GameState | None = None) -> None:
        self._state = state or GameState()
        self._listeners: list[Listener] = []

    @property
    def state(self) -> GameState:
        return self._state

    def snapshot(self) -> GameState:
        return self._state.model_copy(deep=True)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        if not self._listeners:
            return
        snapshot = self.snapshot()
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.warning(f"Session listener {listener!r} failed: {e}")

    def update(self, **fields) -> GameState:
        unknown = set(fields) - set(GameState.model_fields)
        if unknown:
            raise AttributeError(f"Unknown session fields: {sorted(unknown)}")
        self._state = self._state.model_copy(update=fields)
        self._notify()
        return self._state

    def replace_settings(self, settings: GameSettings) -> GameState:
        return self.update(settings=settings)

    def reset_game(self) -> GameState:
        """Revert everything to defaults except settings."""
        self._state = GameState(settings=self._state.settings)
        self._notify()
        return self._state
