import io
from pathlib import Path
from typing import Optional

import click
import structlog

from config import get_settings, get_settings_for_environment
from errors import SourceUnavailableError
from logging_config import configure_logging
from models import ProcessingSummary
from parsing import TransactionParser, read_transactions
from repositories import get_account_repository, get_deposit_repository
from services import get_transaction_processor
from writers import write_accounts_csv

logger = structlog.get_logger()


@click.command()
@click.argument("tx_log", type=click.Path(dir_okay=False, path_type=Path))
@click.option(
    "--env",
    "environment",
    type=click.Choice(["development", "production", "testing"]),
    help="Settings profile (defaults to environment variables and .env)",
)
@click.option(
    "--precision",
    type=click.IntRange(0, 28),
    help="Decimal places written for amounts",
)
def cli(tx_log: Path, environment: Optional[str], precision: Optional[int]) -> None:
    """Apply the transaction log TX_LOG and print the client accounts as CSV."""
    settings = get_settings_for_environment(environment) if environment else get_settings()
    configure_logging(settings)
    if precision is None:
        precision = settings.amount_precision

    parser = TransactionParser(detailed_logging=settings.enable_detailed_logging)
    account_repo = get_account_repository()
    processor = get_transaction_processor(
        account_repo,
        get_deposit_repository(),
        detailed_logging=settings.enable_detailed_logging,
    )

    summary = ProcessingSummary()
    transactions = read_transactions(tx_log, parser=parser, has_header=settings.csv_has_header)
    try:
        processor.process(transactions, summary)
    except SourceUnavailableError as e:
        logger.error("Transaction log unavailable", error_code=e.error_code.value, detail=e.detail)
        raise click.ClickException(e.detail)
    summary.add_rejections(parser.rejections())

    # Nothing is written until the whole log has been applied
    output = io.StringIO()
    write_accounts_csv(account_repo.snapshot(), output, precision=precision)
    click.echo(output.getvalue(), nl=False)

    logger.info(
        "Run complete",
        accounts=account_repo.count(),
        applied=summary.applied,
        skipped=summary.skipped,
        rejected=summary.rejected,
    )


if __name__ == "__main__":
    cli()
