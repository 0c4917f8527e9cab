from __future__ import annotations

import argparse
import datetime as dt
import json
import sys
import time
from typing import Optional

import uvicorn

from walletsync.config import settings
from walletsync.config.log_setup import configure_logging
from walletsync.core.errors import ValidationError
from walletsync.core.validation import (
    VALID_SORT_FIELDS,
    validate_stored_query,
    validate_sync_request,
    validate_token_query,
    validate_trades_query,
)
from walletsync.io.output_writer import (
    write_stored_json,
    write_summary_md,
    write_sync_json,
    write_trades_json,
)
from walletsync.io.schemas import sync_result_to_dict, trades_result_to_dict, trades_to_list
from walletsync.services.sync_service import WalletSyncService
from walletsync.api.app import create_app

from walletsync.adapters.chain.helius_chain_adapter import HeliusChainAdapter
from walletsync.adapters.chain.static_chain_adapter import StaticChainAdapter
from walletsync.adapters.pricing.coingecko_price_adapter import CoinGeckoPriceAdapter
from walletsync.adapters.store.migrations import migrate
from walletsync.adapters.store.postgres_trade_store import PostgresTradeStore, open_connection
from walletsync.adapters.store.static_trade_store import StaticTradeStore


def build_arg_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="walletsync", description="Solana wallet trade sync")
    p.add_argument("--use-static", action="store_true", help="Use in-memory adapters (dev/testing)")
    p.add_argument("--out", default=None, help="Write JSON/markdown outputs to this folder")
    p.add_argument("--log-level", default=settings.LOG_LEVEL, help="Logging level")

    sub = p.add_subparsers(dest="command")

    s = sub.add_parser("sync", help="Fetch, merge and persist trades for tracked wallets")
    s.add_argument("--wallet", action="append", default=[], help="Wallet to sync (repeatable; default: WALLETS)")
    s.add_argument("--days", type=int, default=settings.SYNC_LOOKBACK_DAYS, help="Max lookback in days")

    t = sub.add_parser("trades", help="On-demand per-token activity for one wallet (no writes)")
    t.add_argument("--wallet", required=True, help="Wallet address")
    t.add_argument("--days", type=int, default=settings.SYNC_LOOKBACK_DAYS, help="Lookback window in days")

    r = sub.add_parser("stored", help="Read persisted trades for one wallet or one token")
    who = r.add_mutually_exclusive_group(required=True)
    who.add_argument("--wallet", help="Wallet address")
    who.add_argument("--token", help="Token mint address (rows across all wallets)")
    r.add_argument("--sort-by", default="last_trade", choices=VALID_SORT_FIELDS, help="Sort field")
    r.add_argument("--order", default="DESC", help="ASC or DESC")

    sub.add_parser("migrate", help="Apply pending database migrations")

    v = sub.add_parser("serve", help="Run the HTTP API")
    v.add_argument("--host", default="127.0.0.1", help="Bind host")
    v.add_argument("--port", type=int, default=8000, help="Bind port")
    return p


def _make_progress_reporter():
    start_time = time.time()
    is_tty = sys.stdout.isatty()

    def _short_addr(addr: str) -> str:
        if not addr:
            return ""
        if len(addr) <= 12:
            return addr
        return f"{addr[:6]}...{addr[-4:]}"

    def _ts() -> str:
        return dt.datetime.now().strftime("%H:%M:%S")

    def _print_line(message: str) -> None:
        if is_tty:
            sys.stdout.write("\r" + message.ljust(88))
            sys.stdout.flush()
        else:
            print(message)

    def _clear_line() -> None:
        if is_tty:
            sys.stdout.write("\r" + (" " * 88) + "\r")
            sys.stdout.flush()

    def progress(event: str, data: dict) -> None:
        if event == "start":
            print(f"[{_ts()}] Syncing {data.get('wallets', 0)} wallet(s)")
            return
        if event == "wallet_start":
            _print_line(f"Planning {_short_addr(str(data.get('wallet', '')))}...")
            return
        if event == "fetch":
            start = data.get("start_time")
            since = start.strftime("%Y-%m-%d %H:%M") if start else "?"
            _print_line(f"Fetching {_short_addr(str(data.get('wallet', '')))} since {since}...")
            return
        if event == "wallet_done":
            _clear_line()
            print(f"[{_ts()}] {_short_addr(str(data.get('wallet', '')))}: {data.get('trades', 0)} trade(s)")
            return
        if event == "done":
            _clear_line()
            elapsed = time.time() - start_time
            print(
                f"[{_ts()}] Done in {elapsed:.1f}s • "
                f"{data['wallets']} wallet(s) • {data['trades']} trade(s)"
            )
            return
        if event == "error":
            _clear_line()
            wallet = _short_addr(str(data.get("wallet", "")))
            prefix = f"{wallet}: " if wallet else ""
            print(f"[{_ts()}] Error: {prefix}{data.get('message', 'Unknown error')}", file=sys.stderr)

    return progress


def _print_json(payload) -> None:
    print(json.dumps(payload, indent=2))


def _build_service(args, conn) -> WalletSyncService:
    if args.use_static:
        return WalletSyncService(chain=StaticChainAdapter(), store=StaticTradeStore())
    chain = HeliusChainAdapter()
    price = CoinGeckoPriceAdapter()
    return WalletSyncService(chain=chain, store=PostgresTradeStore(conn), price=price)


def _needs_helius(args) -> bool:
    return not args.use_static and args.command in ("sync", "trades")


def _run(args, svc: WalletSyncService, progress) -> int:
    if args.command == "sync":
        request = validate_sync_request(args.wallet or settings.WALLETS, args.days)
        if not request.wallets:
            progress("error", {"message": "No wallets to sync: pass --wallet or set WALLETS"})
            return 2
        results = svc.sync_all(request, on_progress=progress)
        if args.out:
            print(f"Wrote: {write_sync_json(results, args.out)}")
        else:
            _print_json({"results": [sync_result_to_dict(r) for r in results]})
        return 0 if all(r.error is None for r in results) else 1

    if args.command == "trades":
        query = validate_trades_query(args.wallet, args.days)
        result = svc.query_trades(query)
        if args.out:
            print(f"Wrote: {write_trades_json(result, args.out)}")
            print(f"Wrote: {write_summary_md(result, args.out)}")
        else:
            _print_json(trades_result_to_dict(result))
        if result.error:
            progress("error", {"wallet": query.wallet, "message": result.error})
            return 1
        return 0

    if args.command == "stored":
        if args.token:
            trades = svc.token_trades(validate_token_query(args.token, args.sort_by, args.order))
        else:
            trades = svc.stored_trades(validate_stored_query(args.wallet, args.sort_by, args.order))
        if args.out:
            print(f"Wrote: {write_stored_json(trades, args.out)}")
        else:
            _print_json(trades_to_list(trades))
        return 0

    return 2


def main(argv: Optional[list] = None) -> int:
    parser = build_arg_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)
    progress = _make_progress_reporter()

    if not args.command:
        parser.print_help()
        return 2

    if args.command == "serve":
        uvicorn.run(create_app(use_static=args.use_static), host=args.host, port=args.port)
        return 0

    if _needs_helius(args) and not settings.HELIUS_API_KEY:
        # Helius key should come from env or .env
        progress("error", {"message": "Missing HELIUS_API_KEY environment variable"})
        return 2

    conn = None
    try:
        if args.command == "migrate" or not args.use_static:
            conn = open_connection(settings.DATABASE_URL)

        if args.command == "migrate":
            applied = migrate(conn, settings.MIGRATIONS_DIR)
            print(f"Applied {len(applied)} migration(s)" + (f": {', '.join(applied)}" if applied else ""))
            return 0

        svc = _build_service(args, conn)
        return _run(args, svc, progress)

    except ValidationError as exc:
        progress("error", {"message": f"{exc} ({'; '.join(exc.details)})"})
        return 2
    except Exception as exc:
        progress("error", {"message": f"{exc.__class__.__name__}: {exc}"})
        return 1
    finally:
        if conn is not None:
            conn.close()


if __name__ == "__main__":
    raise SystemExit(main())
