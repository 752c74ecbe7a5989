import os
from pathlib import Path

from dotenv import load_dotenv

ROOT = Path(__file__).parent.parent.parent
load_dotenv(ROOT / ".env")

DEFAULT_FIRST_SCENE = "chapter1_scene01"


def content_dir() -> Path:
    return Path(os.getenv("NOVEL_CONTENT_DIR", str(ROOT / "content")))


def data_dir() -> Path:
    return Path(os.getenv("NOVEL_DATA_DIR", str(ROOT / "data")))


def first_scene_id() -> str:
    return os.getenv("NOVEL_FIRST_SCENE", DEFAULT_FIRST_SCENE)


def allowed_origins() -> list[str]:
    return os.getenv(
        "CORS_ALLOWED_ORIGINS",
        "http://localhost:3000,http://localhost:5173",
    ).split(",")


def log_level() -> str:
    return os.getenv("LOG_LEVEL", "INFO").upper()
