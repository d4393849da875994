"""Sail operator main application."""

import asyncio
import logging
import signal
from typing import Optional

from .config import OperatorConfig, ReconcilerConfig, Settings, get_settings
from .helm import HelmCliInstaller
from .manager import ControllerManager
from .store import KubernetesResourceStore
from .watch import ResourceWatcher

logger = logging.getLogger(__name__)


class Application:
    """Main application orchestrator."""

    def __init__(self, settings: Settings):
        """
        Initialize application.

        Args:
            settings: Application settings
        """
        self.settings = settings
        self.manager: Optional[ControllerManager] = None
        self._shutdown = False

    async def start(self) -> None:
        """Start the application."""
        from . import __version__

        logger.info("Starting Sail Operator...")
        logger.info(f"   Version: {__version__}")
        logger.info(f"   Platform: {self.settings.platform.value}")
        logger.info(f"   Resources: {self.settings.resource_directory}")

        store = KubernetesResourceStore(self.settings.kubeconfig_path)
        self.manager = ControllerManager(
            store,
            HelmCliInstaller(),
            ReconcilerConfig.from_settings(self.settings),
            OperatorConfig.from_file(self.settings.config_file),
            ResourceWatcher(store),
        )
        await self.manager.start()

        logger.info("Sail Operator started successfully")

        # Run until shutdown signal
        try:
            while not self._shutdown:
                await asyncio.sleep(1)
        except asyncio.CancelledError:
            pass

    async def stop(self) -> None:
        """Stop the application."""
        logger.info("Shutting down Sail Operator...")
        self._shutdown = True

        if self.manager:
            await self.manager.stop()

        logger.info("Sail Operator stopped")

    def handle_signal(self, sig: int) -> None:
        """
        Handle shutdown signals.

        Args:
            sig: Signal number
        """
        logger.info(f"Received signal {sig}, initiating shutdown...")
        self._shutdown = True


async def main() -> None:
    """Main entry point."""
    settings = get_settings()
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    app = Application(settings)

    # Setup signal handlers
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, app.handle_signal, sig)

    try:
        await app.start()
    finally:
        await app.stop()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
