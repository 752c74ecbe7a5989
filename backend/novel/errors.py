class NovelError(Exception):
    """Base class for errors surfaced by the playback engine."""


class SceneNotFoundError(NovelError, LookupError):
    def __init__(self, scene_id: str, path: str | None = None) -> None:
        self.scene_id = scene_id
        self.path = path
        where = f" at '{path}'" if path else ""
        super().__init__(f"Scene '{scene_id}' not found{where}")


class MalformedContentError(NovelError, ValueError):
    pass


class NoSaveError(NovelError, LookupError):
    def __init__(self, key: str = "autosave") -> None:
        self.key = key
        super().__init__(f"No readable save under '{key}'")


class PersistenceError(NovelError, OSError):
    pass
