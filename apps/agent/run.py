"""
CLI entry point for the token agent.

Usage:
    # Dry-run mode (virtual clock, synthetic feeds, paper exchange)
    python -m apps.agent.run --mode dry --duration 3600

    # Paper mode (wall clock, paper exchange)
    python -m apps.agent.run --mode paper --config shared/config/config.yaml

    # Resume a symbol halted by an invariant violation
    python -m apps.agent.run --mode paper --ack PEPE
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path
from typing import Optional

from apps.agent.orchestrator import Agent
from shared.config import load_config


def setup_logging(log_level: str = "INFO", log_file: Optional[str] = None) -> None:
    """
    Configure logging.

    Logs to:
    - stdout (console)
    - file (if log_file specified)

    Format: [timestamp] [level] [module] message
    """
    log_format = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
    date_format = "%Y-%m-%d %H:%M:%S"

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setFormatter(logging.Formatter(log_format, date_format))

    handlers = [console_handler]

    if log_file:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(log_file)
        file_handler.setFormatter(logging.Formatter(log_format, date_format))
        handlers.append(file_handler)

    logging.basicConfig(
        level=getattr(logging, log_level.upper()),
        handlers=handlers,
    )


def parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    """
    Parse command-line arguments.

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        description="Autonomous token trading agent",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # One virtual hour in dry mode (runs instantly)
  python -m apps.agent.run --mode dry --duration 3600

  # Paper trading on two symbols until Ctrl+C
  python -m apps.agent.run --mode paper --symbols PEPE WIF --log-level INFO
        """
    )

    parser.add_argument(
        "--mode",
        type=str,
        choices=["dry", "paper"],
        default=None,
        help="Execution mode: dry (virtual clock) or paper (wall clock). Overrides config"
    )

    parser.add_argument(
        "--config",
        type=str,
        default="shared/config/config.yaml",
        help="Path to configuration file (YAML)"
    )

    parser.add_argument(
        "--symbols",
        type=str,
        nargs="+",
        default=None,
        help="Override symbols from config (e.g., --symbols PEPE WIF)"
    )

    parser.add_argument(
        "--duration",
        type=float,
        default=None,
        help="Run time in seconds (virtual seconds in dry mode). Dry mode defaults to 3600, paper runs until Ctrl+C"
    )

    parser.add_argument(
        "--ack",
        type=str,
        nargs="+",
        default=(),
        help="Acknowledge halted symbols restored from the last snapshot"
    )

    parser.add_argument(
        "--log-level",
        type=str,
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        default="INFO",
        help="Logging level"
    )

    parser.add_argument(
        "--log-file",
        type=str,
        default=None,
        help="Log file path (optional, logs to stdout by default)"
    )

    return parser.parse_args(argv)


async def main_async(argv: Optional[list[str]] = None) -> int:
    """
    Async main entry point.

    Returns:
        Exit code (0 = success, 1 = error, 130 = interrupted)
    """
    args = parse_args(argv)

    setup_logging(log_level=args.log_level, log_file=args.log_file)
    logger = logging.getLogger(__name__)

    agent = None
    reason = "NORMAL"
    try:
        config_path = Path(args.config)
        if config_path.exists():
            config = load_config(config_path)
            logger.info(f"Loaded config from {args.config}")
        else:
            logger.warning(f"Config file not found: {args.config}. Using defaults.")
            config = load_config(None)

        runtime = config.runtime
        overrides = {}
        if args.mode:
            overrides["mode"] = args.mode
        if args.symbols:
            overrides["symbols"] = args.symbols
        if overrides:
            config = config.model_copy(update={"runtime": runtime.model_copy(update=overrides)})

        agent = Agent(config)
        await agent.hook_start()
        for symbol in args.ack:
            if agent.acknowledge(symbol):
                logger.info(f"Acknowledged halt on {symbol}")

        duration = args.duration
        if duration is None and agent.mode == "dry":
            duration = 3_600.0

        logger.info(f"Running agent in {agent.mode} mode for {duration or 'unbounded'} seconds...")
        if duration is None:
            while True:
                await agent.run_for(3_600.0)
        else:
            await agent.run_for(duration)

        logger.info(
            f"Agent completed: generation={agent.register.current().generation} "
            f"equity={agent.portfolio.equity:.2f}"
        )
        return 0

    except KeyboardInterrupt:
        reason = "INTERRUPTED"
        logger.info("Interrupted by user (Ctrl+C)")
        return 130

    except asyncio.CancelledError:
        reason = "INTERRUPTED"
        logger.info("Cancelled")
        return 130

    except Exception as e:
        reason = "ERROR"
        logger.exception(f"Fatal error: {e}")
        return 1

    finally:
        if agent is not None and agent.start_ts is not None:
            await agent.hook_shutdown(reason)


def main() -> int:
    """
    Synchronous main entry point (for CLI).

    Returns:
        Exit code (0 = success, 1 = error)
    """
    try:
        return asyncio.run(main_async())
    except KeyboardInterrupt:
        return 130


if __name__ == "__main__":
    sys.exit(main())
