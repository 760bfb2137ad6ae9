"""Main entry point for the spinwheel service."""

import asyncio
import signal
import sys

from dotenv import load_dotenv

from .broadcaster import OutcomeBroadcaster
from .chat import TwitchChatClient
from .config import WheelConfig
from .events import RedemptionEvent
from .exceptions import ConfigurationError
from .handler import RedemptionHandler
from .helix import HelixClient
from .logger import configure_json_logging, configure_logging_from_env, get_logger
from .obs import OBSClient
from .overlay import OverlayServer
from .task_tracker import TaskTracker

logger = get_logger(__name__)


class WheelService:
    """Wires chat, overlay, Helix and OBS around the redemption handler."""

    def __init__(self, config: WheelConfig):
        self.config = config

        # Components
        self.tracker = TaskTracker("redemptions")
        self.broadcaster = OutcomeBroadcaster()
        self.helix = HelixClient(config.client_id, config.bearer_token, base_url=config.helix_url)
        self.chat = TwitchChatClient(
            config.client_id,
            config.client_secret,
            config.bearer_token,
            config.channel_name,
            refresh_token=config.refresh_token,
        )
        self.obs = OBSClient(config.obs_host, config.obs_port, config.obs_password)
        self.handler = RedemptionHandler(config, self.helix, self.chat, self.broadcaster, self.tracker)
        self.overlay = OverlayServer(
            self.broadcaster,
            host=config.host,
            port=config.port,
            status_providers={
                "chat": self.chat.get_status,
                "obs": self.obs.get_status,
                "redemptions": self.tracker.get_status,
            },
        )

        # State
        self.running = False
        self.tasks: list[asyncio.Task] = []

    def _on_redemption(self, event: RedemptionEvent) -> None:
        """Start one task per qualifying redemption so spins never wait on each other."""
        if not self.handler.matches(event):
            return
        self.tracker.create_task(self.handler.handle(event), name=f"redemption:{event.event_id}")

    async def start(self):
        """Start the service."""
        logger.info("Starting spinwheel...")

        await self.helix.__aenter__()
        self.chat.on_redemption(self._on_redemption)
        await self.chat.start()

        await self.overlay.start()

        self.running = True
        self.tasks = [
            asyncio.create_task(self.obs.listen_with_reconnect(), name="obs"),
        ]

        logger.info(f"Monitoring channel: {self.config.channel_name}")
        logger.info(f'Watching for redemptions: "{self.config.reward_id}"')

    async def stop(self):
        """Stop the service. Acknowledgments still waiting on their timer are dropped."""
        logger.info("Stopping spinwheel...")
        self.running = False

        await self.tracker.shutdown()
        await self.chat.stop()
        await self.obs.disconnect()

        for task in self.tasks:
            task.cancel()
        await asyncio.gather(*self.tasks, return_exceptions=True)

        await self.overlay.stop()
        await self.helix.__aexit__(None, None, None)

        logger.info("Spinwheel stopped")


def load_config() -> WheelConfig:
    """Read and validate configuration from the environment.

    Raises:
        ConfigurationError: One or more settings are missing or invalid
    """
    config = WheelConfig()
    errors = config.validate()
    if errors:
        raise ConfigurationError(errors)
    return config


def _log_unhandled_exception(loop: asyncio.AbstractEventLoop, context: dict) -> None:
    exception = context.get("exception")
    logger.error(
        f"Unhandled rejection: {context.get('message', 'unknown error')}",
        error=str(exception) if exception else None,
        exc_info=exception,
    )


async def main():
    """Main entry point."""
    load_dotenv()

    try:
        config = load_config()
    except ConfigurationError as e:
        configure_logging_from_env()
        for error in e.errors:
            logger.error(f"Configuration error: {error}")
        sys.exit(1)

    configure_json_logging(level=config.log_level, json_output=config.json_logs)

    loop = asyncio.get_running_loop()
    # Backstop only: nothing restarts the process after this fires
    loop.set_exception_handler(_log_unhandled_exception)

    service = WheelService(config)
    shutdown = asyncio.Event()

    def handle_shutdown():
        logger.info("Received shutdown signal")
        shutdown.set()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, handle_shutdown)

    try:
        await service.start()
        await shutdown.wait()
    except Exception as e:
        logger.error(f"Service error: {e}", exc_info=True)
    finally:
        await service.stop()


def run():
    """Console script entry point."""
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nShutting down...")
        sys.exit(0)
