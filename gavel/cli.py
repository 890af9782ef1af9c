import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation
from logging.handlers import RotatingFileHandler
from typing import Annotated, Optional
import os
import typer
from gavel.core import EngineError
from gavel.engine import AuctionEngine
from gavel.identity import format_bidder_label
from gavel.queries import ActiveAuctionFilter, SortKey
from gavel.scheduler import main as run, tick as run_tick
from gavel.settings import load_settings

if os.getenv("DEBUG_CLI", "0") == "1":
    import debugpy

    debugpy.listen(("0.0.0.0", 5679))
    if os.getenv("DEBUGPY_WAIT", "0") == "1":
        debugpy.wait_for_client()


# ---------------------------------------------------------------------------
# Global logging configuration - set once at import time
# ---------------------------------------------------------------------------
LOG_LEVEL = logging.DEBUG if os.getenv("GAVEL_DEBUG", "0") == "1" else logging.INFO
logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s -- %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
file_handler = RotatingFileHandler(
    "./gavel.log", maxBytes=10 * 1024 * 1024, backupCount=5, encoding="utf-8"
)
file_handler.setLevel(LOG_LEVEL)
file_handler.setFormatter(
    logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s -- %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
)

root = logging.getLogger()  # root logger
root.addHandler(file_handler)


app = typer.Typer(help="gavel CLI")


def _engine() -> AuctionEngine:
    settings = load_settings()
    # short-lived process: deliver events before we exit
    settings.notifications.inline = True
    return AuctionEngine(settings=settings)


def _fail(exc: EngineError):
    typer.echo(f"error [{exc.code}]: {exc.message}", err=True)
    minimum = getattr(exc, "minimum_bid", None)
    if minimum is not None:
        typer.echo(f"minimum bid: {minimum}", err=True)
    raise typer.Exit(code=1)


@app.command()
def start():
    """Run the scheduler (activate due auctions, end expired ones)."""
    run()


@app.command()
def tick():
    """Run both scheduler entry points once."""
    activated, ended = run_tick(_engine())
    print(f"activated {activated}, ended {ended}")


@app.command()
def create(
    listing_id: str,
    start: Annotated[
        Optional[datetime], typer.Option("--start", help="UTC start; default now.")
    ] = None,
    days: Annotated[Optional[int], typer.Option("--days", "-d")] = None,
):
    """Create an auction for an approved listing."""
    try:
        auction = _engine().create_auction(listing_id, start, days)
    except EngineError as exc:
        _fail(exc)
    print(f"{auction.id} {auction.status.value} ends {auction.current_end_time:%Y-%m-%d %H:%M}")


@app.command()
def bid(
    auction_id: str,
    bidder_id: str,
    amount: str,
):
    """Place a bid."""
    try:
        value = Decimal(amount)
    except InvalidOperation:
        raise typer.BadParameter(f"not a number: {amount}")
    if not value.is_finite():
        raise typer.BadParameter(f"not a finite amount: {amount}")
    try:
        result = _engine().place_bid(auction_id, bidder_id, value)
    except EngineError as exc:
        _fail(exc)
    label = format_bidder_label(result.bid.bidder_number, result.bid.bidder_country)
    extra = f" (extended to {result.auction.current_end_time:%H:%M:%S})" if result.extended else ""
    print(f"{label} leads at {result.auction.currency} {result.bid.amount:,.2f}{extra}")


@app.command()
def end(
    auction_id: str,
    force: Annotated[bool, typer.Option("--force", help="Close before end time.")] = False,
):
    """End an auction and settle it."""
    try:
        auction = _engine().end_auction(auction_id, force=force)
    except EngineError as exc:
        _fail(exc)
    print(f"{auction.id} {auction.status.value} final={auction.final_price}")


@app.command()
def cancel(auction_id: str, reason: str):
    """Cancel a scheduled or active auction."""
    try:
        auction = _engine().cancel_auction(auction_id, reason)
    except EngineError as exc:
        _fail(exc)
    print(f"{auction.id} {auction.status.value}")


@app.command()
def ls(
    sort: Annotated[SortKey, typer.Option("--sort", "-s")] = SortKey.ENDING_SOON,
    search: Annotated[Optional[str], typer.Option("--search", "-q")] = None,
    limit: Annotated[
        int, typer.Option("--limit", "-n", help="Number of rows.")
    ] = 20,
):
    """Show active auctions."""
    page = _engine().get_active_auctions(
        ActiveAuctionFilter(limit=limit, sort_by=sort, search=search)
    )
    for a in page.items:
        price = a.current_bid if a.current_bid is not None else a.starting_price
        print(
            f"{a.current_end_time:%m-%d %H:%M} | {a.title[:40]:40} | "
            f"{a.currency} {price:,.2f} | {a.bid_count} bids"
        )
    print(f"-- {page.total} active")


@app.command()
def history(
    auction_id: str,
    limit: Annotated[
        int, typer.Option("--limit", "-n", help="Number of bids.")
    ] = 20,
):
    """Show the public bid history of an auction."""
    for b in _engine().get_bid_history(auction_id, limit=limit):
        mark = "*" if b.is_winning else " "
        print(
            f"{mark} {b.created_at:%H:%M:%S} | "
            f"{format_bidder_label(b.bidder_number, b.bidder_country):20} | "
            f"{b.amount:,.2f}"
        )


if __name__ == "__main__":
    app()
