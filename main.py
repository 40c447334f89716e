import argparse
import sys
from typing import List, NoReturn, Optional, TextIO

import structlog

from config import Settings, get_settings
from csv_io import CsvTransactionReader, write_accounts_csv
from exceptions import (
    EXIT_IO_ERROR,
    EXIT_OK,
    EXIT_USAGE,
    InputFormatError,
    LedgerError,
)
from logging_config import configure_logging
from models import ReplayStats
from repositories import get_account_repository, get_transaction_history_repository
from services import get_ledger_service

logger = structlog.get_logger()


class LedgerArgumentParser(argparse.ArgumentParser):
    """Argument parser that reports usage errors with a dedicated exit code."""

    def error(self, message: str) -> NoReturn:
        self.print_usage(sys.stderr)
        logger.error("Invalid command line", error=message)
        self.exit(EXIT_USAGE, f"{self.prog}: error: {message}\n")


def build_parser(settings: Settings) -> argparse.ArgumentParser:
    parser = LedgerArgumentParser(
        prog="transaction-ledger",
        description="Replay a CSV of transactions and print the final client accounts as CSV",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {settings.app_version}")
    parser.add_argument("csv_path", help="Input CSV with columns type, client, tx, amount")
    parser.add_argument(
        "--skip-rejected",
        action="store_true",
        default=settings.skip_rejected,
        help="Log transactions the ledger refuses and keep going instead of aborting",
    )
    return parser


def app_main(
    csv_path: str,
    output: TextIO,
    settings: Settings,
    skip_rejected: bool = False
) -> ReplayStats:
    """Replay ``csv_path`` into a fresh ledger and write the accounts to ``output``.

    Nothing is written unless the whole input was processed.
    """
    service = get_ledger_service(get_account_repository(), get_transaction_history_repository())

    logger.info("Replay started", csv_path=csv_path, skip_rejected=skip_rejected)

    with open(csv_path, newline="", encoding="utf-8-sig") as stream:
        reader = CsvTransactionReader(stream, delimiter=settings.csv_delimiter)
        stats = service.replay(reader, skip_rejected=skip_rejected)

    write_accounts_csv(
        service.export(),
        output,
        precision=settings.amount_precision,
        sort_by_client=settings.sort_output
    )
    output.flush()
    return stats


def main(argv: Optional[List[str]] = None) -> int:
    settings = get_settings()
    configure_logging(settings)

    args = build_parser(settings).parse_args(argv)

    try:
        app_main(args.csv_path, sys.stdout, settings, skip_rejected=args.skip_rejected)
    except OSError as e:
        logger.error("I/O error", csv_path=args.csv_path, error=str(e))
        return EXIT_IO_ERROR
    except InputFormatError as e:
        logger.error("Malformed input", csv_path=args.csv_path, line=e.line, error=e.detail)
        return e.exit_code
    except LedgerError as e:
        logger.error("Transaction rejected, aborting", error_code=e.error_code, error=str(e))
        return e.exit_code

    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
