# main.py
import asyncio
import signal
import sys
import questionary
from rich.live import Live
from rich.table import Table
from rich.layout import Layout
from rich.console import Console
from rich.panel import Panel

from dualarb.bot import ArbitrageBot
from dualarb.config import ConfigError, load_config
from dualarb.logger import setup_console_logger
from dualarb.market_engine import StartupError
from dualarb.models import BINANCE, MEXC

# --- UI HELPER FUNCTIONS ---

async def confirm_instruments(instruments):
    """Interactive CLI to narrow the discovered universe before streaming."""
    choices = [questionary.Choice(s, checked=True) for s in instruments]
    selected = await questionary.checkbox("Instruments to monitor:", choices=choices).ask_async()
    return selected or []


def generate_dashboard(bot: ArbitrageBot):
    """
    Rich layout: live cross-venue quotes, open pairings and connection health.
    Read-only view of the bot's state.
    """
    binance = bot.feeds[BINANCE].all_prices()
    mexc = bot.feeds[MEXC].all_prices()

    # 1. Price Table
    price_table = Table(title="📡 Live Quotes")
    price_table.add_column("Instrument", style="cyan")
    price_table.add_column("Binance bid/ask", justify="right")
    price_table.add_column("MEXC bid/ask", justify="right")
    price_table.add_column("Spread", justify="right", style="green")

    rows = []
    for symbol in bot.instruments:
        quote = bot.detector.current_prices(symbol)
        spread = (quote.sell_price - quote.buy_price) / quote.buy_price * 100 if quote else None
        rows.append((symbol, binance.get(symbol), mexc.get(symbol), spread))
    rows.sort(key=lambda r: r[3] if r[3] is not None else float('-inf'), reverse=True)

    for symbol, b, m, spread in rows[:15]:
        price_table.add_row(
            symbol,
            f"{b.bid:.6g} / {b.ask:.6g}" if b else "-",
            f"{m.bid:.6g} / {m.ask:.6g}" if m else "-",
            f"{spread:.3f}%" if spread is not None else "-"
        )

    # 2. Pairings Table
    pair_table = Table(title="💼 Open Pairings")
    pair_table.add_column("Instrument", style="magenta")
    pair_table.add_column("Long / Short")
    pair_table.add_column("Entry spread", justify="right")
    pair_table.add_column("Now", justify="right")

    for pairing in bot.ledger.get_open_pairings():
        quote = bot.ledger.price_getter(pairing.instrument)
        now = f"{bot.costs.pairing_profit_percent(pairing, quote):.2f}%" if quote else "-"
        pair_table.add_row(
            pairing.instrument,
            f"{pairing.long_venue.upper()} / {pairing.short_venue.upper()}",
            f"{pairing.entry_spread:.2f}%",
            now
        )

    # Layout Construction
    layout = Layout()
    layout.split_column(
        Layout(name="top"),
        Layout(name="bottom")
    )

    layout["top"].split_row(
        Layout(Panel(price_table)),
        Layout(Panel(pair_table))
    )

    led = bot.ledger.stats()
    health = bot.monitor.stats()['venues']
    status = "  ".join(
        f"{venue.upper()}: {'[green]UP[/green]' if v['connected'] else '[red]DOWN[/red]'} "
        f"({v['disconnects']} drops, {v['uptime_percent']:.1f}% up)"
        for venue, v in health.items()
    )
    footer = Panel(
        f"[bold gold1]BALANCE ${led['balance']:,.2f} | PnL ${led['total_pnl_usd']:,.2f} | "
        f"{led['open']} open / {led['closed']} closed[/bold gold1]   {status}",
        style="white on blue"
    )
    layout["bottom"].update(footer)
    layout["bottom"].size = 3

    return layout

# --- MAIN CONTROLLER ---

async def run(config) -> int:
    system = config['system']
    logger = setup_console_logger("DualArb", system['log_level'])
    bot = ArbitrageBot(config, logger)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass

    try:
        try:
            instruments = await bot.prepare()
        except StartupError as e:
            logger.critical(f"❌ Startup failed: {e}")
            return 1

        if system['interactive']:
            instruments = await confirm_instruments(instruments)
            if not instruments:
                print("No instruments selected. Exiting.")
                return 0

        await bot.start(instruments)

        if system['dashboard']:
            console = Console()
            with Live(console=console, refresh_per_second=system['dashboard_refresh_per_second']) as live:
                while not stop.is_set():
                    live.update(generate_dashboard(bot))
                    try:
                        await asyncio.wait_for(stop.wait(), timeout=1 / system['dashboard_refresh_per_second'])
                    except asyncio.TimeoutError:
                        pass
        else:
            await stop.wait()
        logger.warning("🛑 Shutdown requested")
        return 0
    finally:
        print("Shutting down resources...")
        await bot.shutdown()


if __name__ == "__main__":
    path = sys.argv[1] if len(sys.argv) > 1 else "config.yaml"
    try:
        conf = load_config(path)
    except ConfigError as e:
        print(f"❌ {e}")
        sys.exit(1)
    try:
        import uvloop
        asyncio.set_event_loop_policy(uvloop.EventLoopPolicy())
    except ImportError:
        pass
    try:
        sys.exit(asyncio.run(run(conf)))
    except KeyboardInterrupt:
        print("\n🛑 Bot Stopped by User.")
