"""CSV record source and account serializer."""

import csv
from decimal import ROUND_HALF_EVEN, Decimal, localcontext
from typing import Iterator, TextIO

from pydantic import ValidationError

from errors import InvalidHeaderError, InvalidRecordError
from models import LEDGER_CONTEXT, Transaction
from repositories import AccountRepository

INPUT_FIELDS = ["type", "client", "tx", "amount"]
OUTPUT_FIELDS = ["client", "available", "held", "total", "locked"]

FOUR_PLACES = Decimal("0.0001")


def read_transactions(source: TextIO) -> Iterator[Transaction]:
    """Lazily parse transactions from CSV text.

    Fields are whitespace-trimmed and the amount column may be empty or
    missing entirely. Raises InvalidHeaderError / InvalidRecordError on
    the first malformed line.
    """
    reader = csv.reader(source)

    header = next(reader, None)
    if header is None:
        return
    header = [field.strip() for field in header]
    if header != INPUT_FIELDS:
        raise InvalidHeaderError(header)

    for row in reader:
        if not row:
            continue
        if len(row) not in (3, 4):
            raise InvalidRecordError(
                reader.line_num, f"expected 3 or 4 fields, got {len(row)}"
            )
        yield _parse_row(row, reader.line_num)


def _parse_row(row: list[str], line: int) -> Transaction:
    fields = dict(zip(INPUT_FIELDS, (field.strip() for field in row)))
    try:
        return Transaction.model_validate(fields)
    except ValidationError as e:
        detail = "; ".join(
            f"{'.'.join(str(part) for part in error['loc']) or 'record'}: {error['msg']}"
            for error in e.errors()
        )
        raise InvalidRecordError(line, detail) from e


def format_amount(value: Decimal) -> str:
    """Render with exactly four fractional digits."""
    quantized = value.quantize(FOUR_PLACES, rounding=ROUND_HALF_EVEN, context=LEDGER_CONTEXT)
    if quantized.is_zero():
        quantized = quantized.copy_abs()
    return f"{quantized:f}"


def write_accounts(sink: TextIO, accounts: AccountRepository, sort: bool = True) -> None:
    """Write the account listing. Every row is rendered before the header goes out."""
    items = accounts.items()
    if sort:
        items = iter(sorted(items, key=lambda item: item[0]))

    with localcontext(LEDGER_CONTEXT):
        rows = [
            [
                client,
                format_amount(account.available),
                format_amount(account.held),
                format_amount(account.total),
                "true" if account.locked else "false",
            ]
            for client, account in items
        ]

    writer = csv.writer(sink, lineterminator="\n")
    writer.writerow(OUTPUT_FIELDS)
    writer.writerows(rows)
