import logging
from typing import Callable
from .collaborators import NetworkManager

logger = logging.getLogger(__name__)


class ConnectivityGate:
    """
    Runs work once a network path exists and gives back connectivity it
    switched on itself. A network the user brought up is left alone.
    """

    def __init__(self, network: NetworkManager):
        self.network = network
        self._enabled_by_us = False
        # Runs still holding the network this gate brought up
        self._holders = 0

    @property
    def acquired_by_us(self) -> bool:
        return self._enabled_by_us

    def is_online(self) -> bool:
        """Check connectivity without asking for it."""
        try:
            return bool(self.network.is_online())
        except Exception as e:
            logger.warning(f"Could not query network state: {e}")
            return False

    def run_when_online(self, callback: Callable[[], None]) -> bool:
        """
        Returns True if callback ran right away, False if it was deferred
        until the network manager reports connectivity.
        """
        if self.network.will_rerun_when_online(callback):
            logger.info("Network is off, waiting for it to come up...")
            self._enabled_by_us = True
            self._holders += 1
            return False

        logger.info("Network already available")
        if self._enabled_by_us:
            self._holders += 1
        callback()
        return True

    def release(self):
        if not self._enabled_by_us:
            logger.debug("Network was already on, leaving it enabled")
            return

        self._holders = max(0, self._holders - 1)
        if self._holders:
            logger.debug(f"Network still needed by {self._holders} pending run(s)")
            return

        logger.info("Turning network off after sync")
        self.network.turn_off_wifi()
        self._enabled_by_us = False
