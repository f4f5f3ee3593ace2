import logging
import signal
import sys
import uvicorn
from typing import Callable, Optional

from .config import settings
from .auth import AuthManager
from .clients.http_transport import HttpTransport
from .clients.crossbill_client import CrossbillClient
from .collaborators import BookSource, NetworkManager, Notifier, ReaderDocument
from .connectivity import ConnectivityGate
from .engine import SyncEngine
from .errors import LocalStorageError
from .models import BookData, LifecycleEvent, SyncResult
from .session_store import SessionStore
from .state import ConfigStore
from . import server

logger = logging.getLogger("main")


def setup_logging(level: str = settings.LOG_LEVEL):
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )
    # Silence noisy libraries
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)


class LogNotifier:
    """Notifier for hosts without a UI: everything goes to the log."""

    def show_syncing(self):
        logger.info("Syncing highlights...")

    def show_sync_success(self, created: int, skipped: int, sessions: int):
        logger.info(f"Synced successfully! {created} new, {skipped} duplicates, {sessions} sessions")

    def show_auth_error(self, message: str):
        logger.error(f"Authentication failed: {message}")

    def show_sync_failed(self, message: str):
        logger.error(f"Sync failed: {message}")


class AlwaysOnline:
    """NetworkManager for hosts that do not manage the radio themselves."""

    def is_online(self) -> bool:
        return True

    def will_rerun_when_online(self, callback: Callable[[], None]) -> bool:
        return False

    def turn_off_wifi(self):
        pass


class SyncAgent:
    """
    Receives the host's lifecycle triggers and turns them into session
    tracking and sync runs. Runs are serial; nothing here is threaded.
    """

    def __init__(self, config: ConfigStore, session_store: SessionStore, engine: SyncEngine,
                 gate: ConnectivityGate, notifier: Optional[Notifier] = None):
        self.config = config
        self.sessions = session_store
        self.engine = engine
        self.gate = gate
        self.notifier = notifier or LogNotifier()
        self.last_result: Optional[SyncResult] = None

        # Link agent to server module
        server.agent = self

    @classmethod
    def from_settings(cls, network: NetworkManager, notifier: Optional[Notifier] = None,
                      transport: Optional[HttpTransport] = None) -> "SyncAgent":
        config = ConfigStore(settings.SETTINGS_PATH, persist=settings.PERSIST_ENABLED)
        transport = transport or HttpTransport()
        auth = AuthManager(config, transport)
        client = CrossbillClient(config, auth, transport)
        store = SessionStore(
            settings.SESSION_DB_PATH,
            min_duration=lambda: config.min_session_duration,
            device_id=settings.DEVICE_ID,
        )
        try:
            store.open()
        except LocalStorageError as e:
            # Highlights still sync; sessions just are not recorded this run
            logger.error(f"Session tracking unavailable: {e}")
        engine = SyncEngine(client, store, config)
        return cls(config, store, engine, ConnectivityGate(network), notifier)

    def _tracking(self) -> bool:
        return self.config.is_session_tracking_enabled() and self.sessions.is_open

    def handle_event(self, event: LifecycleEvent, source: Optional[BookSource] = None,
                     document: Optional[ReaderDocument] = None, page: Optional[int] = None):
        event = LifecycleEvent(event)
        logger.debug(f"Lifecycle event: {event.value}")

        if event in (LifecycleEvent.READY, LifecycleEvent.RESUME):
            if document is not None and self._tracking():
                self.sessions.start_session(document, self._book_data(source))

        elif event == LifecycleEvent.PAGE_UPDATE:
            self.sessions.update_position(document, page)

        elif event in (LifecycleEvent.SUSPEND, LifecycleEvent.CLOSE):
            self.sessions.end_session(event.value, document)
            if source is None:
                return
            if self.config.is_autosync_enabled():
                logger.info(f"Auto-syncing on {event.value}")
                self.sync_now(source, autonomous=True)
            elif self.gate.is_online():
                self.engine.upload_sessions_if_online(source)

        elif event == LifecycleEvent.EXIT:
            self.sessions.end_session("app_exit", document)
            if source is not None and self.config.is_autosync_enabled() and self.gate.is_online():
                logger.info("Auto-syncing on exit")
                self.perform_sync(source, autonomous=True)
            self.shutdown()

    def _book_data(self, source: Optional[BookSource]) -> Optional[BookData]:
        if source is None:
            return None
        try:
            return source.extract_book_data()
        except Exception as e:
            logger.warning(f"Failed to extract book metadata: {e}")
            return None

    def sync_now(self, source: BookSource, autonomous: bool = False) -> bool:
        """Sync the open book once a network path exists. Returns True if it ran immediately."""
        ran = self.gate.run_when_online(lambda: self.perform_sync(source, autonomous))
        if not ran:
            logger.info("Waiting for network to be enabled...")
        return ran

    def perform_sync(self, source: BookSource, autonomous: bool = False) -> Optional[SyncResult]:
        if not autonomous:
            self.notifier.show_syncing()

        result = None
        try:
            result = self.engine.sync_book(source, autonomous=autonomous)
        except Exception as e:
            logger.error(f"Error in sync: {e}", exc_info=True)
            if not autonomous:
                self.notifier.show_sync_failed(str(e))
        finally:
            # Always give the network back
            self.gate.release()

        if result is None:
            return None
        self.last_result = result

        if not autonomous:
            if result.success:
                self.notifier.show_sync_success(
                    result.highlights_created, result.highlights_skipped, result.sessions_synced
                )
            elif result.auth_failed:
                self.notifier.show_auth_error(result.error or "unknown error")
            else:
                self.notifier.show_sync_failed(result.error or "unknown error")
        return result

    def shutdown(self):
        self.sessions.close()
        self.engine.client.transport.close()


def handle_sigterm(sig, frame):
    logger.info("Received SIGTERM, shutting down...")
    sys.exit(0)


if __name__ == "__main__":
    setup_logging()
    signal.signal(signal.SIGTERM, handle_sigterm)
    agent = SyncAgent.from_settings(AlwaysOnline())
    try:
        if settings.HTTP_SERVER_ENABLED:
            uvicorn.run(server.app, host="0.0.0.0", port=settings.HTTP_SERVER_PORT, log_level="warning")
        else:
            logger.info("Status server disabled (HTTP_SERVER_ENABLED=false), nothing to serve")
    except KeyboardInterrupt:
        logger.info("Interrupted by user")
    finally:
        agent.shutdown()
