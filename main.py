"""
PriceWatch - Main entry point.

  serve   run the dashboard API under uvicorn
  watch   run the engine headless and print status / auto-refresh changes
"""

import argparse
import asyncio
import logging
import signal
from typing import Optional

from pricewatch.config import settings
from pricewatch.errors import PriceWatchError
from pricewatch.observability.logs import configure_logging, setup_log_rotation

logger = logging.getLogger(__name__)


def serve(host: str, port: int) -> None:
    import uvicorn

    from pricewatch.main import create_app

    uvicorn.run(create_app(rotate_logs=True), host=host, port=port, log_level=settings.LOG_LEVEL.lower())


async def watch(symbol: Optional[str], auto: Optional[bool], duration: Optional[float]) -> None:
    """Run the controller without a server; Ctrl-C (or ``duration``) stops it."""
    from pricewatch.services.dashboard import build_controller

    controller = build_controller(settings)
    last = {"status": None, "label": None}

    def on_view(view) -> None:
        if view.status != last["status"]:
            last["status"] = view.status
            print(f"[status] {view.status}")
        if view.auto_label != last["label"]:
            last["label"] = view.auto_label
            print(f"[auto]   {view.auto_label}")
        if view.ticker is not None:
            logger.debug(f"{view.ticker.symbol} {view.ticker.price} {view.ticker.change}")

    controller.subscribe(on_view)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # add_signal_handler is unavailable on Windows event loops
            pass

    await controller.start()
    try:
        if symbol:
            await controller.apply_symbol(symbol)
        if auto is not None:
            controller.set_auto_refresh(auto)
        if duration:
            try:
                await asyncio.wait_for(stop.wait(), timeout=duration)
            except asyncio.TimeoutError:
                pass
        else:
            await stop.wait()
    finally:
        await controller.stop()
        if controller.ticker is not None:
            print(f"{controller.ticker.symbol}: {controller.ticker.price} {controller.ticker.change}")
        print(controller.engine.snapshot.totals.pnl_text)


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(prog="pricewatch", description="PriceWatch - ticker watch engine")
    parser.add_argument("--log-level", default=settings.LOG_LEVEL, help="Process log level")
    sub = parser.add_subparsers(dest="command")

    p_serve = sub.add_parser("serve", help="Run the dashboard API")
    p_serve.add_argument("--host", default="127.0.0.1")
    p_serve.add_argument("--port", type=int, default=8000)

    p_watch = sub.add_parser("watch", help="Run the engine headless")
    p_watch.add_argument("--symbol", help="Symbol to watch, e.g. BTCUSDT")
    auto = p_watch.add_mutually_exclusive_group()
    auto.add_argument("--auto", dest="auto", action="store_true", default=None, help="Enable auto refresh")
    auto.add_argument("--no-auto", dest="auto", action="store_false", help="Disable auto refresh")
    p_watch.add_argument("--duration", type=float, help="Stop after this many seconds")

    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    if args.command == "serve":
        serve(args.host, args.port)
        return 0
    if args.command == "watch":
        setup_log_rotation(settings.LOG_DIR)
        try:
            asyncio.run(watch(args.symbol, args.auto, args.duration))
        except PriceWatchError as e:
            logger.error(f"{e.error_code}: {e.message}")
            return 1
        return 0

    parser.print_help()
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
