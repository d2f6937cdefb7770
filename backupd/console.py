"""
Interactive console front end.

Reads commands from standard input:
- backup: queue a manual backup
- stop: stop gracefully (waits up to 5 minutes for a running backup)

Anything else is ignored. SIGINT and SIGTERM behave like ``stop``.
"""

import os
import sys
import signal
import logging
import threading

from backupd import configure_logging, create_app
from backupd.config import ConfigError


logger = logging.getLogger(__name__)

STOP_TIMEOUT = 5 * 60


class CommandConsole:
    """
    Maps text commands onto orchestrator operations.

    Never runs backup logic itself; it only queues cycles or requests
    shutdown.
    """

    def __init__(self, orchestrator, stop_timeout: float = STOP_TIMEOUT):
        self.orchestrator = orchestrator
        self.stop_timeout = stop_timeout
        self.drained = None
        self._stopped = threading.Event()
        self._stop_lock = threading.Lock()

    @property
    def stopped(self) -> bool:
        return self._stopped.is_set()

    def handle(self, line: str) -> bool:
        """
        Handle one line of input.

        Returns:
            False once the console has stopped, True otherwise
        """
        command = line.strip().lower()

        if command == 'backup':
            self.orchestrator.trigger_manual()
        elif command == 'stop':
            self.stop()
        elif command:
            logger.debug(f"Ignoring unknown command: {command}")

        return not self.stopped

    def stop(self):
        """Stop the orchestrator once; later calls are no-ops."""
        with self._stop_lock:
            if self.stopped:
                return
            self.drained = self.orchestrator.stop(self.stop_timeout)
            self._stopped.set()

    def listen(self, stream=None):
        """
        Read commands from stream on a separate thread until stopped.

        When the stream ends the daemon keeps running until stopped by a
        signal.
        """
        reader = threading.Thread(
            target=self._read_commands,
            args=(stream or sys.stdin,),
            name='backupd-console',
            daemon=True
        )
        reader.start()
        self._stopped.wait()

    def _read_commands(self, stream):
        for line in stream:
            if not self.handle(line):
                return
        logger.info("Command input closed, running until terminated")

    def install_signal_handlers(self):
        """Request a graceful stop on SIGINT and SIGTERM."""
        def _handle_signal(signum, frame):
            logger.info(f"Received signal {signum}")
            # stop() waits for the running cycle
            threading.Thread(target=self.stop, name='backupd-stop', daemon=True).start()

        signal.signal(signal.SIGINT, _handle_signal)
        signal.signal(signal.SIGTERM, _handle_signal)


def main(config_path: str = None) -> int:
    """Console entry point."""
    configure_logging()
    logger.info("backupd")
    logger.info("Loading config...")

    try:
        orchestrator = create_app(config_path)
    except ConfigError as e:
        logger.error(f"Invalid configuration: {e}")
        return 1

    orchestrator.start()
    console = CommandConsole(orchestrator)
    console.install_signal_handlers()
    logger.info("Started! You can type 'backup' to start manual backup or 'stop' to quit.")

    console.listen()

    if not console.drained:
        # The worker thread cannot be interrupted; leave without joining it
        logging.shutdown()
        os._exit(0)

    return 0


if __name__ == '__main__':
    sys.exit(main())
