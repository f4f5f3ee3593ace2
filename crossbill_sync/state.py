import json
import logging
import os
import time
import fcntl
from pathlib import Path
from typing import Optional
from .models import UserConfig
from .config import settings

logger = logging.getLogger(__name__)

class ConfigStore:
    """
    Persisted user configuration and credential cache.

    Holds the server URL, username/password and the cached access/refresh
    tokens. Every mutator saves immediately; nothing else in the agent keeps
    its own copy of a token.
    """

    def __init__(self, path: str, persist: bool = True,
                 default_base_url: str = settings.DEFAULT_BASE_URL,
                 default_min_session: int = settings.DEFAULT_MIN_SESSION_SECONDS,
                 default_token_lifetime: int = settings.DEFAULT_TOKEN_LIFETIME_SECONDS):
        self.path = Path(path)
        self.persist = persist
        self.read_only = False
        self.default_token_lifetime = default_token_lifetime
        self._defaults = UserConfig(
            base_url=default_base_url.rstrip("/"),
            min_session_duration=default_min_session,
        )
        self.data = self._defaults.model_copy()
        self.load()

    def load(self) -> "ConfigStore":
        if not self.path.exists():
            logger.info(f"No settings file found at {self.path}, using defaults.")
            self.data = self._defaults.model_copy()
            return self

        try:
            with open(self.path, 'r') as f:
                raw = json.load(f)
            merged = self._defaults.model_dump()
            merged.update(raw)
            self.data = UserConfig(**merged)
        except Exception as e:
            logger.error(f"Failed to load settings: {e}. Starting fresh.", exc_info=True)
            self.data = self._defaults.model_copy()
        return self

    def save(self) -> "ConfigStore":
        if not self.persist or self.read_only:
            return self

        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix('.tmp')
        try:
            with open(tmp_path, 'w') as f:
                try:
                    fcntl.flock(f, fcntl.LOCK_EX | fcntl.LOCK_NB)
                except BlockingIOError:
                    logger.warning("Could not acquire lock for settings save. Skipping save cycle.")
                    return self

                try:
                    json.dump(self.data.model_dump(), f, indent=2)
                    f.flush()
                    os.fsync(f.fileno())
                finally:
                    fcntl.flock(f, fcntl.LOCK_UN)

            os.rename(tmp_path, self.path)

        except OSError as e:
            logger.error(f"Failed to save settings to {self.path}: {e}")
            # Keep working from memory for the rest of this run
            self.read_only = True
        return self

    # Server configuration

    @property
    def base_url(self) -> str:
        return self.data.base_url

    @property
    def api_url(self) -> str:
        return f"{self.data.base_url}/api/v1"

    @property
    def username(self) -> str:
        return self.data.username or ""

    @property
    def password(self) -> str:
        return self.data.password or ""

    def has_credentials(self) -> bool:
        return self.username != "" and self.password != ""

    def update_server_config(self, base_url: str, username: str, password: str) -> "ConfigStore":
        """Replace server URL and account. Cached tokens belong to the old account and are dropped."""
        self.data.base_url = base_url.rstrip("/")
        self.data.username = username
        self.data.password = password
        self._reset_tokens()
        return self.save()

    # Feature toggles

    def is_autosync_enabled(self) -> bool:
        return self.data.autosync_enabled is True

    def toggle_autosync(self) -> bool:
        self.data.autosync_enabled = not self.is_autosync_enabled()
        self.save()
        return self.data.autosync_enabled

    def is_session_tracking_enabled(self) -> bool:
        return self.data.session_tracking_enabled is True

    @property
    def min_session_duration(self) -> int:
        return self.data.min_session_duration

    # Token cache

    @property
    def access_token(self) -> Optional[str]:
        return self.data.access_token

    @property
    def refresh_token(self) -> Optional[str]:
        return self.data.refresh_token

    @property
    def token_expires_at(self) -> Optional[float]:
        return self.data.token_expires_at

    def set_tokens(self, access_token: str, refresh_token: Optional[str] = None,
                   expires_in: Optional[float] = None, now: Optional[float] = None) -> "ConfigStore":
        now = time.time() if now is None else now
        if expires_in is None:
            expires_in = self.default_token_lifetime
        self.data.access_token = access_token
        self.data.token_expires_at = now + float(expires_in)
        if refresh_token:
            self.data.refresh_token = refresh_token
        return self.save()

    def clear_tokens(self) -> "ConfigStore":
        self._reset_tokens()
        return self.save()

    def _reset_tokens(self):
        self.data.access_token = None
        self.data.refresh_token = None
        self.data.token_expires_at = None
