import argparse
import sys
from typing import Optional, Sequence

import structlog

from config import get_settings
from errors import InputFormatError
from logging_setup import configure_logging
from services import run

logger = structlog.get_logger()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="payments-engine",
        description="Replay a CSV of transactions and print final client balances as CSV.",
    )
    parser.add_argument("path", help="Path to the CSV file of transactions to process")
    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    settings = get_settings()
    configure_logging(settings.log_level, settings.log_format)

    try:
        with open(args.path, newline="", encoding="utf-8") as source:
            run(source, sys.stdout, settings)
    except InputFormatError as e:
        logger.error("Malformed input", path=args.path, error=e.message, line=e.line)
        return 1
    except (OSError, UnicodeDecodeError) as e:
        logger.error("Unable to read input", path=args.path, error=str(e))
        return 1

    return 0


if __name__ == "__main__":
    sys.exit(main())
