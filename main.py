"""
Main application entry point for Half Beat Player (headless backend)
"""
import argparse
import logging
import signal
import sys
import threading
from pathlib import Path

from halfbeat.core.context import CoreContext

APP_NAME = "Half Beat Player"
APP_VERSION = "1.0.0"


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description=f"{APP_NAME} backend")
    parser.add_argument(
        "--data-dir",
        type=Path,
        default=None,
        help="Data directory (default: $HALF_BEAT_DATA_DIR or ~/.half-beat-player)",
    )
    parser.add_argument(
        "--port",
        type=int,
        default=None,
        help="Local audio proxy port (default: proxy_port from config)",
    )
    parser.add_argument(
        "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Root log level",
    )
    return parser.parse_args(argv)


def main(argv=None) -> int:
    """Main application entry point"""
    args = parse_args(argv)
    logger = logging.getLogger(__name__)

    try:
        core = CoreContext(args.data_dir, proxy_port=args.port)
    except Exception as e:
        logging.basicConfig(level=logging.ERROR)
        logger.exception(f"Fatal error during startup: {e}")
        return 1

    core.logging.setup_logging(getattr(logging, args.log_level))
    logger.info("=" * 50)
    logger.info(f"{APP_NAME} v{APP_VERSION} starting")
    logger.info(f"Data directory: {core.dirs.base}")
    logger.info("=" * 50)

    stop = threading.Event()
    signal.signal(signal.SIGTERM, lambda signum, frame: stop.set())
    try:
        core.proxy.start()
        logger.info(f"Audio proxy serving at {core.proxy.base_url}")
        while not stop.wait(1.0):
            pass
    except KeyboardInterrupt:
        logger.info("Application interrupted by user")
    except Exception as e:
        logger.exception(f"Fatal error: {e}")
        return 1
    finally:
        logger.info("Shutting down...")
        core.close()
        logger.info("Application closed")
    return 0


if __name__ == "__main__":
    sys.exit(main())
