"""Main entry point for the wave arbiter decision core."""
import argparse
import asyncio
import json
import logging
import sys
import uuid

from wavearbiter.core.config import load_config, ConfigError
from wavearbiter.core.orchestrator import CycleInputError, DecisionOrchestrator
from wavearbiter.core.state_machine import IllegalTransitionError
from wavearbiter.providers import ProviderError
from wavearbiter.retrieval import RetrievalError

logger = logging.getLogger(__name__)


def parse_args(args: list[str] | None = None) -> argparse.Namespace:
    """Parse command line arguments.

    Args:
        args: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Parsed arguments namespace
    """
    parser = argparse.ArgumentParser(
        prog="python -m wavearbiter",
        description="Wave arbiter - dual-scenario market analysis with rule-grounded arbitration",
    )

    parser.add_argument(
        "-c", "--config",
        default="config/default.yaml",
        help="Path to configuration file (default: config/default.yaml)",
    )

    parser.add_argument(
        "-l", "--log-level",
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"],
        help="Logging level (default: INFO)",
    )

    parser.add_argument("--query", help="Analysis question to run a decision cycle for")
    parser.add_argument(
        "--conversation-id",
        help="Conversation to attach the cycle to (a new one is generated if omitted)",
    )
    parser.add_argument("--symbol", default="BTCUSDT", help="Instrument symbol (default: BTCUSDT)")
    parser.add_argument("--timeframe", default="4H", help="Chart timeframe (default: 4H)")
    parser.add_argument("--user-id", default="anonymous", help="User for risk context (default: anonymous)")

    action = parser.add_mutually_exclusive_group()
    action.add_argument("--show-state", action="store_true", help="Print the trading state and exit")
    action.add_argument("--invalidate", action="store_true", help="Mark the scenario invalidated and exit")

    return parser.parse_args(args)


def setup_logging(level: str) -> None:
    """Configure logging for the application.

    Args:
        level: Logging level string (DEBUG, INFO, etc.)
    """
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

    logging.basicConfig(
        level=getattr(logging, level),
        format=log_format,
        handlers=[
            logging.StreamHandler(sys.stdout),
        ],
    )

    # Reduce noise from external libraries
    logging.getLogger("aiohttp").setLevel(logging.WARNING)


async def run(parsed_args: argparse.Namespace, orchestrator: DecisionOrchestrator) -> dict:
    """Run the requested action and return its printable result."""
    conversation_id = parsed_args.conversation_id
    symbol = parsed_args.symbol
    timeframe = parsed_args.timeframe

    if parsed_args.show_state or parsed_args.invalidate:
        if not conversation_id:
            raise CycleInputError("--conversation-id is required for state commands")
        if parsed_args.invalidate:
            orchestrator.invalidate(conversation_id, symbol, timeframe, reason="Invalidated from command line")
        return orchestrator.describe_state(conversation_id, symbol, timeframe)

    if not parsed_args.query:
        raise CycleInputError("--query is required to run a decision cycle")

    await orchestrator.start()
    try:
        result = await orchestrator.run_decision_cycle(
            query=parsed_args.query,
            conversation_id=conversation_id or str(uuid.uuid4()),
            symbol=symbol,
            timeframe=timeframe,
            user_id=parsed_args.user_id,
        )
    finally:
        await orchestrator.stop()

    return result.to_dict()


def main(args: list[str] | None = None) -> int:
    """Main entry point.

    Args:
        args: Command line arguments (defaults to sys.argv[1:])

    Returns:
        Exit code (0 for success, 1 for error)
    """
    parsed_args = parse_args(args)

    setup_logging(parsed_args.log_level)

    logger.info(f"Config: {parsed_args.config}")

    try:
        config = load_config(parsed_args.config)
        orchestrator = DecisionOrchestrator(config)

        output = asyncio.run(run(parsed_args, orchestrator))
        print(json.dumps(output, indent=2, default=str))
        return 0

    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    except CycleInputError as e:
        logger.error(f"Invalid request: {e}")
        return 1

    except (RetrievalError, ProviderError) as e:
        logger.error(f"Decision cycle failed: {e}")
        return 1

    except IllegalTransitionError as e:
        logger.error(f"State change rejected: {e}")
        return 1

    except KeyboardInterrupt:
        logger.info("Interrupted by user")
        return 0

    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
