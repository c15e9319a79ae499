import sys
import asyncio
import logging
import argparse

from .config import Config
from .exceptions import RelayerError
from .relayer import CrossChainRelayer

logger = logging.getLogger("bridge_relayer")


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Cross-chain bridge and governance relayer")
    parser.add_argument("--env-file", default=None, help="Path of a .env file to load")
    parser.add_argument("--once", action="store_true", help="Run a single poll iteration and exit")
    return parser.parse_args(argv)


async def run(config: Config, once: bool = False) -> None:
    relayer = CrossChainRelayer.from_config(config)
    try:
        await relayer.start(max_iterations=1 if once else None)
    except asyncio.CancelledError:
        relayer.stop()
        raise


def main(argv=None) -> int:
    """Main entry point for the relayer service."""
    args = parse_args(argv)
    try:
        config = Config.from_env(env_file=args.env_file)
    except RelayerError as e:
        logging.basicConfig(level=logging.INFO)
        logger.critical(f"[relayer] fatal: {e}")
        return 1

    logging.basicConfig(
        level=getattr(logging, config.log_level, logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    try:
        asyncio.run(run(config, once=args.once))
    except KeyboardInterrupt:
        logger.info("Shutdown signal received.")
    except RelayerError as e:
        logger.critical(f"[relayer] fatal: {e}")
        return 1
    except Exception as e:
        logger.critical(f"A fatal error occurred during initialization: {e}", exc_info=True)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
