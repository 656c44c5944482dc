import os
from typing import Any, List, Mapping, Optional


def _int(environ: Mapping[str, str], name: str, default: int) -> int:
    value = environ.get(name)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {value!r}")


class Config:
    """Runtime settings read from the environment.

    Attributes are upper-case so an instance can be handed to
    ``app.config.from_object``.
    """

    SECRET_KEY: str
    PIPELINE: str
    IMAGE_TAG: str
    DEPLOY_RETRIES: Optional[int]
    MAX_WORKERS: int
    ARTIFACT_DIR: Optional[str]
    WORKING_DIR: str
    TELEGRAM_BOT_TOKEN: Optional[str]
    TELEGRAM_CHAT_ID: Optional[str]
    RUN_URL: Optional[str]
    BRANCHES: List[str]

    def __init__(self, environ: Optional[Mapping[str, str]] = None):
        environ = os.environ if environ is None else environ

        self.SECRET_KEY = environ.get("SECRET_KEY") or "bastion-secret-key-change-in-production"
        self.PIPELINE = environ.get("BASTION_PIPELINE") or "full_ci_cd"
        self.IMAGE_TAG = environ.get("BASTION_IMAGE_TAG") or "x7m7s7/devops:latest"
        retries = environ.get("BASTION_DEPLOY_RETRIES")
        self.DEPLOY_RETRIES = _int(environ, "BASTION_DEPLOY_RETRIES", 2) if retries else None
        self.MAX_WORKERS = max(1, _int(environ, "BASTION_MAX_WORKERS", 4))
        self.ARTIFACT_DIR = environ.get("BASTION_ARTIFACT_DIR") or None
        self.WORKING_DIR = environ.get("BASTION_WORKING_DIR") or os.getcwd()

        self.TELEGRAM_BOT_TOKEN = environ.get("TELEGRAM_BOT_TOKEN") or None
        self.TELEGRAM_CHAT_ID = environ.get("TELEGRAM_CHAT_ID") or None
        self.RUN_URL = environ.get("BASTION_RUN_URL") or None

        branches = environ.get("BASTION_BRANCHES") or ""
        self.BRANCHES = [b.strip() for b in branches.split(",") if b.strip()]

        if self.DEPLOY_RETRIES is not None and self.DEPLOY_RETRIES < 0:
            raise ValueError("BASTION_DEPLOY_RETRIES must be >= 0")

    @property
    def telegram_enabled(self) -> bool:
        return bool(self.TELEGRAM_BOT_TOKEN and self.TELEGRAM_CHAT_ID)

    def init_app(self, app: Any) -> None:
        if self.ARTIFACT_DIR:
            os.makedirs(self.ARTIFACT_DIR, exist_ok=True)
