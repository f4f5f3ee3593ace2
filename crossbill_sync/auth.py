import logging
import time
from typing import Any, Callable, Optional
from .clients.http_transport import HttpTransport
from .config import settings
from .errors import AuthError, NetworkError
from .state import ConfigStore

logger = logging.getLogger(__name__)


class AuthManager:
    """
    Produces a currently valid bearer token.

    Order is fixed: cached token, then refresh, then full login. Tokens only
    ever live in the ConfigStore.
    """

    def __init__(self, store: ConfigStore, transport: HttpTransport,
                 expiry_buffer: int = settings.TOKEN_EXPIRY_BUFFER_SECONDS,
                 clock: Callable[[], float] = time.time):
        self.store = store
        self.transport = transport
        self.expiry_buffer = expiry_buffer
        self.clock = clock

    def is_configured(self) -> bool:
        return self.store.has_credentials()

    def get_valid_token(self) -> str:
        now = self.clock()
        token = self.store.access_token
        expires_at = self.store.token_expires_at

        if token and expires_at is not None and now < expires_at - self.expiry_buffer:
            logger.debug("Using cached access token")
            return token

        if self.store.refresh_token:
            logger.debug("Access token expired or missing, trying refresh")
            try:
                return self.refresh_token()
            except AuthError as e:
                logger.debug(f"Refresh failed: {e}")

        logger.debug("Falling back to full login")
        return self.login()

    def login(self) -> str:
        if not self.is_configured():
            logger.warning("Username or password not configured")
            raise AuthError("not configured")

        url = f"{self.store.api_url}/auth/login"
        logger.debug(f"Logging in to {url}")
        code, data = self.transport.post_form(url, {
            "username": self.store.username,
            "password": self.store.password,
        })

        token = self._access_token_from(code, data)
        if token is None:
            logger.error(f"Login failed with code: {code}")
            raise AuthError(f"login failed: {code}")

        logger.info("Login successful")
        self.store.set_tokens(token, data.get("refresh_token"), data.get("expires_in"), now=self.clock())
        return token

    def refresh_token(self) -> str:
        refresh_token = self.store.refresh_token
        if not refresh_token:
            raise AuthError("no refresh token")

        url = f"{self.store.api_url}/auth/refresh"
        logger.debug(f"Refreshing token at {url}")
        try:
            code, data = self.transport.post_json(url, {"refresh_token": refresh_token})
        except NetworkError as e:
            logger.error(f"Network error during refresh: {e}")
            self.store.clear_tokens()
            raise AuthError(f"refresh failed: {e}") from e

        token = self._access_token_from(code, data)
        if token is None:
            logger.error(f"Token refresh failed with code: {code}")
            # Force a full login next time
            self.store.clear_tokens()
            raise AuthError(f"refresh failed: {code}")

        logger.debug("Token refresh successful")
        self.store.set_tokens(token, data.get("refresh_token"), data.get("expires_in"), now=self.clock())
        return token

    @staticmethod
    def _access_token_from(code: int, data: Optional[Any]) -> Optional[str]:
        if code == 200 and isinstance(data, dict) and data.get("access_token"):
            return data["access_token"]
        return None
