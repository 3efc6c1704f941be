"""
Main application entry point - HTTP/WebSocket interface with graceful shutdown handling.
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
import sys

from datamind.clients import GeminiClient
from datamind.config import Configuration
from datamind.history import HistoryStore, create_repository
from datamind.logging_utils import configure_logging, on_logging_config_change
from datamind.server import run_server

# Configure logging for the application
logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(levelname)s - %(message)s")


async def main() -> None:
    """Main entry point - HTTP/WebSocket interface with graceful shutdown handling."""
    config = Configuration()

    # Apply consolidated logging configuration from YAML
    configure_logging(config.get_logging_config())

    # Subscribe to configuration changes for real-time logging updates
    config.subscribe_to_changes(on_logging_config_change)

    # Create repository for history using configured storage mode
    config.get_history_config()
    store = HistoryStore(create_repository(config.get_config_dict()))

    # Setup graceful shutdown handler
    shutdown_event = asyncio.Event()

    def signal_handler() -> None:
        """Handle shutdown signals gracefully."""
        logging.info("Received shutdown signal, initiating graceful shutdown...")
        shutdown_event.set()

    # Register signal handlers for graceful shutdown
    if sys.platform != "win32":
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, signal_handler)

    async with GeminiClient(config) as client:
        try:
            # Start configuration file watching for event-driven updates
            await config.start_watching()

            server_task = asyncio.create_task(run_server(client, store, config))

            # Wait for either server completion or shutdown signal
            done, pending = await asyncio.wait(
                [server_task, asyncio.create_task(shutdown_event.wait())],
                return_when=asyncio.FIRST_COMPLETED,
            )

            # Cancel pending tasks if shutdown was requested
            for task in pending:
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task

            # Check if server task completed with an exception
            for task in done:
                if task == server_task:
                    exception = task.exception()
                    if exception is not None:
                        raise exception

        except KeyboardInterrupt:
            logging.info("Keyboard interrupt received, shutting down...")
        except Exception as e:
            logging.error(f"Application error: {e}")
            raise
        finally:
            # Stop configuration watching
            await config.stop_watching()
            logging.info("Application shutdown complete")


def cli_main() -> None:
    """Synchronous CLI entrypoint that runs the async main."""
    asyncio.run(main())


if __name__ == "__main__":
    cli_main()
