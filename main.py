"""fsync-s3 main entry point."""

import asyncio
import logging
import os
import signal
import sys
from pathlib import Path

from dotenv import load_dotenv

from fsync_s3.core.errors import ConfigurationError, SyncError
from fsync_s3.core.pipeline import SyncPipeline
from fsync_s3.models.sync_config import DEFAULT_CONFIG_PATHS, SyncConfig, find_config_path

# Set up logging
logging.basicConfig(level=logging.INFO, format="%(asctime)s - %(name)s - %(levelname)s - %(message)s")
logger = logging.getLogger(__name__)

CONFIG_ENV_VAR = "FSYNC_S3_CONFIG"


class FsyncS3App:
    """Runs one sync pipeline until it is stopped or fails."""

    def __init__(self, config: SyncConfig):
        """Initialize application."""
        self.config = config
        self.pipeline = SyncPipeline(config)

    async def start(self) -> None:
        """Run the pipeline. Fatal errors propagate to the caller."""
        logger.info("Starting fsync-s3...")
        self._setup_signal_handlers()
        try:
            await self.pipeline.run()
        finally:
            logger.info(f"📊 Final status: {self.pipeline.get_statistics()}")
        logger.info("🛑 fsync-s3 stopped")

    def _setup_signal_handlers(self) -> None:
        """Setup signal handlers for graceful shutdown."""
        loop = asyncio.get_running_loop()

        def signal_handler(signum, _=None):
            logger.info(f"Received signal {signum}")
            loop.call_soon_threadsafe(self.pipeline.stop)

        # Setup signal handlers based on platform
        if os.name == "nt":  # Windows
            signal.signal(signal.SIGINT, signal_handler)
            # SIGTERM is not delivered on Windows, SIGBREAK is the closest
            if hasattr(signal, "SIGBREAK"):
                signal.signal(signal.SIGBREAK, signal_handler)
        else:  # Unix-like (macOS, Linux)
            for signum in (signal.SIGINT, signal.SIGTERM):
                loop.add_signal_handler(signum, signal_handler, signum)


def load_app_config() -> SyncConfig:
    """Locate and load the configuration.

    Raises:
        ConfigurationError: If no configuration exists or it is invalid
    """
    load_dotenv()
    config_path = find_config_path(os.environ.get(CONFIG_ENV_VAR))

    if config_path is None:
        example_path = DEFAULT_CONFIG_PATHS[1].with_name("config.example.yaml")
        if not example_path.exists():
            SyncConfig(
                region="us-east-1",
                bucket="your-bucket-name",
                local_directory=str(Path.home() / "inbound"),
                access_key="your-access-key-id",
                secret="your-secret-access-key",
            ).save(example_path)
            logger.info(f"Example configuration created at {example_path}")
        searched = ", ".join(str(p) for p in DEFAULT_CONFIG_PATHS)
        raise ConfigurationError(f"Configuration file not found (searched {searched}; set {CONFIG_ENV_VAR} to override)")

    config = SyncConfig.load(config_path)
    logging.getLogger().setLevel(config.log_level.upper())
    logger.info(f"Loaded configuration from {config_path}")
    return config


async def main() -> int:
    """Main entry point."""
    config = load_app_config()
    app = FsyncS3App(config)
    await app.start()
    return 0


def sync_main():
    """Synchronous main entry point for setuptools."""
    try:
        exit_code = asyncio.run(main())
        sys.exit(exit_code)
    except KeyboardInterrupt:
        logger.info("Application interrupted")
        sys.exit(0)
    except SyncError as e:
        print(f"Fatal error: {e}", file=sys.stderr)
        sys.exit(1)
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    sync_main()
