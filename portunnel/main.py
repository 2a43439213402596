from __future__ import annotations

import asyncio
import logging
import signal

from portunnel.adapters.web.server import WebControlPlane
from portunnel.capabilities.tunnel.controller import TunnelController
from portunnel.capabilities.tunnel.ngrok import NgrokDockerRunner
from portunnel.config import Config
from portunnel.core.commands import Commands
from portunnel.core.events import EventBus
from portunnel.core.redact import install_secret_filter
from portunnel.inventory.watcher import ContainerInventoryWatcher

logger = logging.getLogger("portunnel")


def setup_logging(config: Config) -> None:
    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s [%(name)s] %(levelname)s: %(message)s",
        handlers=[
            logging.StreamHandler(),
            logging.FileHandler(config.log_file),
        ],
    )
    # Auth tokens registered at expose time are masked in every handler
    install_secret_filter()


async def main() -> None:
    config = Config.from_env()
    setup_logging(config)
    logger.info("portunnel starting...")

    # -- Initialize core infrastructure --
    event_bus = EventBus()
    runner = NgrokDockerRunner(
        docker_binary=config.docker_binary,
        image=config.tunnel_image,
        launch_timeout=config.launch_timeout,
    )
    controller = TunnelController(
        runner,
        event_bus=event_bus,
        poll_interval=config.poll_interval,
        poll_timeout=config.poll_timeout,
    )
    watcher = ContainerInventoryWatcher(socket_path=config.docker_socket)

    # Command API: single entry point for all control planes
    commands = Commands(controller, watcher, event_bus=event_bus)

    # Re-list on every container start/destroy
    watcher.on_container_lifecycle_event(commands.refresh_containers)
    await commands.refresh_containers()
    watcher.start()

    web_cp = WebControlPlane(
        commands, event_bus, config.log_file, port=config.dashboard_port,
    )

    # Handle shutdown signals
    stop_event = asyncio.Event()

    def handle_signal() -> None:
        logger.info("Shutdown signal received")
        stop_event.set()

    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        loop.add_signal_handler(sig, handle_signal)

    await web_cp.start()
    logger.info("portunnel is running. Press Ctrl+C to stop.")

    await stop_event.wait()

    # Cleanup: the tunnel container does not outlive the daemon
    logger.info("Shutting down...")
    await controller.shutdown()
    await watcher.stop()
    await web_cp.stop()
    logger.info("portunnel stopped.")


def run() -> None:
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        pass


if __name__ == "__main__":
    run()
