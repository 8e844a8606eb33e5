import csv
from decimal import Decimal, ROUND_HALF_EVEN, localcontext
from typing import Iterable, TextIO

from models import AccountSnapshot

HEADER = ("client", "available", "held", "total", "locked")


def format_amount(value: Decimal, precision: int = 4) -> str:
    """Render an amount with exactly ``precision`` decimal places."""
    with localcontext() as ctx:
        # quantize needs room for every integer digit plus the requested decimals
        ctx.prec = max(ctx.prec, value.adjusted() + precision + 2)
        return str(value.quantize(Decimal(1).scaleb(-precision), rounding=ROUND_HALF_EVEN))


def write_accounts_csv(accounts: Iterable[AccountSnapshot], stream: TextIO, precision: int = 4) -> int:
    """Write one CSV line per account. Returns the number of accounts written."""
    writer = csv.writer(stream, lineterminator="\n")
    writer.writerow(HEADER)

    written = 0
    for account in accounts:
        writer.writerow((
            account.client,
            format_amount(account.available, precision),
            format_amount(account.held, precision),
            format_amount(account.total, precision),
            "true" if account.locked else "false",
        ))
        written += 1
    return written
