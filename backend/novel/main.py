import asyncio
import json
import logging
from contextlib import asynccontextmanager
from pathlib import Path

from fastapi import FastAPI, HTTPException, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from pydantic import ValidationError

from novel import config
from novel.audio import CueAudio
from novel.engine import NarrativeEngine
from novel.errors import MalformedContentError, NoSaveError, NovelError, SceneNotFoundError
from novel.models import (
    CharacterData,
    ChoiceRequest,
    EngineStatus,
    GameSettings,
    GameState,
    SceneData,
    SessionMessage,
)
from novel.persistence import FileBlobStore, SaveService
from novel.script_store import ScriptStore
from novel.session import SessionStore

logging.basicConfig(level=config.log_level())
logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Composition root
# ---------------------------------------------------------------------------
def build_engine(content_dir: Path, data_dir: Path, first_scene_id: str | None = None) -> NarrativeEngine:
    return NarrativeEngine(
        scripts=ScriptStore(content_dir),
        saves=SaveService(FileBlobStore(data_dir)),
        session=SessionStore(),
        audio=CueAudio(),
        first_scene_id=first_scene_id or config.first_scene_id(),
    )


def _engine(request: Request) -> NarrativeEngine:
    return request.app.state.engine


def _http_error(e: NovelError) -> HTTPException:
    if isinstance(e, (SceneNotFoundError, NoSaveError)):
        return HTTPException(status_code=404, detail=str(e))
    if isinstance(e, MalformedContentError):
        return HTTPException(status_code=422, detail=str(e))
    return HTTPException(status_code=500, detail=str(e))


def _state_payload(engine: NarrativeEngine) -> dict:
    return {
        "type": "state",
        "state": engine.session.snapshot().model_dump(mode="json", by_alias=True),
        "engine": engine.get_state().model_dump(mode="json", by_alias=True),
    }


# ---------------------------------------------------------------------------
# App
# ---------------------------------------------------------------------------
def create_app(
    content_dir: Path | None = None,
    data_dir: Path | None = None,
    first_scene_id: str | None = None,
) -> FastAPI:
    resolved_content = content_dir or config.content_dir()
    resolved_data = data_dir or config.data_dir()
    engine = build_engine(resolved_content, resolved_data, first_scene_id)

    # Settings and character metadata are read once at startup
    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await engine.load_settings()
        await engine.initialize()
        engine.scripts.load_characters()
        logger.info(f"Serving scenes from '{resolved_content}', saves under '{resolved_data}'")
        yield
        await engine.dispose()

    app = FastAPI(title="Scene Player API", lifespan=lifespan)
    app.state.engine = engine

    app.add_middleware(
        CORSMiddleware,
        allow_origins=config.allowed_origins(),
        allow_credentials=False,
        allow_methods=["GET", "POST", "PATCH", "DELETE"],
        allow_headers=["content-type"],
    )

    _register_routes(app)

    # Scene assets (backgrounds, avatars, audio) are opaque paths the client resolves here
    assets_dir = Path(resolved_content) / "assets"
    if assets_dir.exists():
        app.mount("/assets", StaticFiles(directory=str(assets_dir)), name="assets")

    return app


def _register_routes(app: FastAPI) -> None:
    # -----------------------------------------------------------------------
    # REST Endpoints
    # -----------------------------------------------------------------------

    @app.get("/health")
    async def health() -> dict:
        return {"status": "ok"}

    @app.get("/api/state")
    async def get_state(request: Request) -> GameState:
        return _engine(request).session.snapshot()

    @app.get("/api/engine")
    async def get_engine(request: Request) -> dict:
        engine = _engine(request)
        return {
            "engine": engine.get_state().model_dump(mode="json", by_alias=True),
            "progress": engine.scene_progress().model_dump(),
        }

    @app.post("/api/game/new")
    async def post_new_game(request: Request) -> dict:
        engine = _engine(request)
        try:
            await engine.start_new_game()
        except NovelError as e:
            raise _http_error(e)
        return _state_payload(engine)

    @app.post("/api/game/continue")
    async def post_continue(request: Request) -> dict:
        engine = _engine(request)
        try:
            await engine.continue_game()
        except NovelError as e:
            raise _http_error(e)
        return _state_payload(engine)

    @app.post("/api/game/next")
    async def post_next(request: Request) -> dict:
        engine = _engine(request)
        try:
            await engine.next_event()
        except NovelError as e:
            raise _http_error(e)
        return _state_payload(engine)

    @app.post("/api/game/choice")
    async def post_choice(body: ChoiceRequest, request: Request) -> dict:
        engine = _engine(request)
        try:
            accepted = await engine.make_choice(body.choice_id)
        except NovelError as e:
            raise _http_error(e)
        return {**_state_payload(engine), "accepted": accepted}

    @app.post("/api/game/pause")
    async def post_pause(request: Request) -> dict:
        engine = _engine(request)
        await engine.pause()
        return _state_payload(engine)

    @app.post("/api/game/resume")
    async def post_resume(request: Request) -> dict:
        engine = _engine(request)
        await engine.resume()
        return _state_payload(engine)

    @app.post("/api/game/save")
    async def post_save(request: Request) -> dict:
        return {"ok": await _engine(request).save_game()}

    @app.get("/api/save")
    async def get_save(request: Request) -> dict:
        return {"exists": await _engine(request).saves.has_save()}

    @app.delete("/api/save")
    async def delete_save(request: Request) -> dict:
        return {"ok": await _engine(request).delete_save()}

    @app.get("/api/settings")
    async def get_settings(request: Request) -> GameSettings:
        return _engine(request).session.state.settings

    @app.patch("/api/settings")
    async def patch_settings(body: dict, request: Request) -> GameSettings:
        try:
            return await _engine(request).update_settings(body)
        except ValidationError as e:
            raise HTTPException(status_code=422, detail=json.loads(e.json()))

    @app.get("/api/characters/{character_id}")
    async def get_character(character_id: str, request: Request) -> CharacterData:
        return _engine(request).character(character_id)

    @app.get("/api/scenes/{scene_id}")
    async def get_scene(scene_id: str, request: Request) -> SceneData:
        try:
            return await asyncio.to_thread(_engine(request).scripts.load_scene, scene_id)
        except NovelError as e:
            raise _http_error(e)

    @app.get("/api/audio/cues")
    async def get_audio_cues(request: Request) -> dict:
        return {"cues": _engine(request).audio.drain()}

    # -----------------------------------------------------------------------
    # WebSocket /ws/session
    # -----------------------------------------------------------------------

    @app.websocket("/ws/session")
    async def ws_session(websocket: WebSocket) -> None:
        engine: NarrativeEngine = websocket.app.state.engine
        await websocket.accept()

        async def flush() -> None:
            await websocket.send_text(json.dumps(_state_payload(engine)))
            cues = engine.audio.drain()
            if cues:
                await websocket.send_text(json.dumps({"type": "audio", "cues": cues}))

        try:
            await flush()
            async for raw in websocket.iter_text():
                try:
                    msg = SessionMessage.model_validate_json(raw)
                except ValidationError:
                    logger.warning("WS received malformed message, ignoring")
                    continue

                try:
                    await _dispatch(engine, msg)
                except NovelError as e:
                    logger.warning(f"WS {msg.type} rejected: {e}")
                    await websocket.send_text(json.dumps({"type": "error", "message": str(e)}))
                except ValidationError as e:
                    await websocket.send_text(
                        json.dumps({"type": "error", "message": f"Invalid settings: {e.error_count()} error(s)"})
                    )
                await flush()

                if engine.status == EngineStatus.ENDED and msg.type in ("next", "choice"):
                    await websocket.send_text(json.dumps({
                        "type": "complete",
                        "ending": engine.session.state.current_scene,
                        "completedScenes": engine.session.state.progress.completed_scenes,
                    }))

        except WebSocketDisconnect:
            logger.info(f"WS session {id(websocket)} disconnected")
        except Exception as e:
            logger.error(f"WS session {id(websocket)} error: {e}", exc_info=True)
            try:
                await websocket.send_text(json.dumps({"type": "error", "message": "Internal server error"}))
            except Exception as send_err:
                logger.warning(f"WS session {id(websocket)} failed to send error: {send_err}")


async def _dispatch(engine: NarrativeEngine, msg: SessionMessage) -> None:
    if msg.type == "new":
        await engine.start_new_game()
    elif msg.type == "continue":
        await engine.continue_game()
    elif msg.type == "next":
        await engine.next_event()
    elif msg.type == "choice":
        if msg.choice_id:
            await engine.make_choice(msg.choice_id)
    elif msg.type == "pause":
        await engine.pause()
    elif msg.type == "resume":
        await engine.resume()
    elif msg.type == "save":
        await engine.save_game()
    elif msg.type == "settings":
        await engine.update_settings(msg.settings or {})
    else:
        logger.warning(f"WS received unknown message type '{msg.type}'")


# Default app instance for uvicorn (uses NOVEL_* env vars or defaults)
app = create_app()
