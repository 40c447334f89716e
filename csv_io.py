import csv
import math
from decimal import Decimal, ROUND_HALF_EVEN, localcontext
from typing import Iterable, Iterator, List, Optional, TextIO

from pydantic import ValidationError

from exceptions import InputFormatError
from models import AccountSnapshot, TransactionRecord


REQUIRED_COLUMNS = ("type", "client", "tx")
OUTPUT_HEADER = ("client", "available", "held", "total", "locked")
BYTE_ORDER_MARK = "\ufeff"

# Enough digits for the integer part of the largest double plus any requested scale
_DECIMAL_PRECISION = 400


class CsvTransactionReader:
    """Lazily parses transaction records from a delimited text stream.

    The first non-blank row is the header; its column names are matched
    case-insensitively. Cells are trimmed and an empty amount means "no
    amount". The first malformed row raises ``InputFormatError``.
    """

    def __init__(self, stream: TextIO, delimiter: str = ","):
        self.stream = stream
        self.delimiter = delimiter

    def __iter__(self) -> Iterator[TransactionRecord]:
        reader = csv.reader(self.stream, delimiter=self.delimiter)
        rows = self._rows(reader)

        header = next(rows, None)
        if header is None:
            return
        columns = self._parse_header(header, reader.line_num)

        for row in rows:
            yield self._parse_row(columns, row, reader.line_num)

    @staticmethod
    def _rows(reader) -> Iterator[List[str]]:
        while True:
            try:
                row = next(reader)
            except StopIteration:
                return
            except csv.Error as e:
                raise InputFormatError(reader.line_num, str(e)) from e
            except UnicodeDecodeError as e:
                raise InputFormatError(reader.line_num + 1, f"undecodable input: {e}") from e

            cells = [cell.strip() for cell in row]
            if any(cells):
                yield cells

    @staticmethod
    def _parse_header(header: List[str], line: int) -> List[str]:
        # Streams decoded as plain utf-8 keep the byte-order mark on the first cell
        header = [header[0].lstrip(BYTE_ORDER_MARK).strip()] + header[1:]
        columns = [name.lower() for name in header]
        missing = [name for name in REQUIRED_COLUMNS if name not in columns]
        if missing:
            raise InputFormatError(line, f"missing column(s): {', '.join(missing)}")
        return columns

    @staticmethod
    def _parse_row(columns: List[str], row: List[str], line: int) -> TransactionRecord:
        if len(row) > len(columns):
            raise InputFormatError(line, f"expected at most {len(columns)} fields, found {len(row)}")

        values = {name: cell for name, cell in zip(columns, row) if name}
        try:
            return TransactionRecord.model_validate(values)
        except ValidationError as e:
            problems = "; ".join(
                f"{'.'.join(str(part) for part in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            raise InputFormatError(line, problems) from e


def format_amount(value: float, precision: Optional[int] = None) -> str:
    """Render a float as plain positional decimal.

    Without ``precision`` this is the shortest string that round-trips to the
    same double, minus trailing zeros. Zero (of either sign) renders as ``0``.
    """
    if not math.isfinite(value):
        return repr(value)

    with localcontext() as ctx:
        ctx.prec = _DECIMAL_PRECISION
        amount = Decimal(repr(value))
        if precision is not None:
            amount = amount.quantize(Decimal(1).scaleb(-precision), rounding=ROUND_HALF_EVEN)
        if amount == 0:
            return "0"
        return format(amount.normalize(), "f")


def write_accounts_csv(
    snapshots: Iterable[AccountSnapshot],
    stream: TextIO,
    precision: Optional[int] = None,
    sort_by_client: bool = False
) -> None:
    """Write one ``client,available,held,total,locked`` row per account."""
    if sort_by_client:
        snapshots = sorted(snapshots, key=lambda snapshot: snapshot.client)

    writer = csv.writer(stream, lineterminator="\n")
    writer.writerow(OUTPUT_HEADER)
    for snapshot in snapshots:
        writer.writerow([
            snapshot.client,
            format_amount(snapshot.available, precision),
            format_amount(snapshot.held, precision),
            format_amount(snapshot.total, precision),
            "true" if snapshot.locked else "false",
        ])
