from __future__ import annotations

import json
from decimal import Decimal
from pathlib import Path
from typing import Any, Iterable, List, Optional

from walletsync.core.models import PersistedTrade, TradesQueryResult, WalletSyncResult
from walletsync.io.schemas import sync_result_to_dict, trades_result_to_dict, trades_to_list


def _write_json(payload: Any, out_dir: str, filename: str) -> str:
    p = Path(out_dir)
    p.mkdir(parents=True, exist_ok=True)

    out_path = p / filename
    with out_path.open("w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2)

    return str(out_path)


def write_trades_json(result: TradesQueryResult, out_dir: str, filename: str = "trades.json") -> str:
    return _write_json(trades_result_to_dict(result), out_dir, filename)


def write_stored_json(trades: Iterable[PersistedTrade], out_dir: str, filename: str = "stored.json") -> str:
    return _write_json(trades_to_list(trades), out_dir, filename)


def write_sync_json(results: Iterable[WalletSyncResult], out_dir: str, filename: str = "sync.json") -> str:
    return _write_json({"results": [sync_result_to_dict(r) for r in results]}, out_dir, filename)


def write_summary_md(
    result: TradesQueryResult,
    out_dir: str,
    filename: str = "summary.md",
    top_n: Optional[int] = 15,
) -> str:
    """
    Per-token trade summary for one wallet's window.
    """
    p = Path(out_dir)
    p.mkdir(parents=True, exist_ok=True)

    out_path = p / filename

    metrics = [a.metrics for a in result.activity.values()]
    traded = [m for m in metrics if m.buys or m.sells]

    total_invested = sum((m.invested_sol for m in metrics), Decimal("0"))
    total_received = sum((m.total_sol_received for m in metrics), Decimal("0"))
    total_pnl = sum((m.realized_pnl for m in metrics), Decimal("0"))

    def fmt_sol(x: Decimal) -> str:
        return f"{x:.4f}"

    def short(addr: str) -> str:
        return addr if len(addr) <= 14 else f"{addr[:6]}...{addr[-4:]}"

    by_pnl = sorted(traded, key=lambda m: m.realized_pnl, reverse=True)
    winners = [m for m in by_pnl if m.realized_pnl > 0][:top_n]
    losers = [m for m in reversed(by_pnl) if m.realized_pnl < 0][:top_n]

    lines: List[str] = []
    lines.append("# Wallet Trade Summary\n")
    lines.append(f"- Wallet: **{result.wallet}**\n")
    if result.start_time is not None:
        lines.append(f"- Window start: **{result.start_time.isoformat()}**\n")
    lines.append(f"- Tokens touched: **{len(metrics)}**\n")
    lines.append(f"- Tokens traded: **{len(traded)}**\n")
    lines.append(f"- Invested: **{fmt_sol(total_invested)} SOL**\n")
    lines.append(f"- Received: **{fmt_sol(total_received)} SOL**\n")
    lines.append(f"- Realized PnL: **{fmt_sol(total_pnl)} SOL**\n")
    if result.error:
        lines.append(f"- Error: `{result.error}`\n")
    lines.append("\n")

    lines.append("## Best Tokens (by realized PnL)\n\n")
    if not winners:
        lines.append("_No profitable tokens in the selected window._\n\n")
    else:
        for m in winners:
            lines.append(
                f"- **{fmt_sol(m.realized_pnl)} SOL** | {m.token_name} ({short(m.token_address)}) "
                f"| ROI {m.roi}% | {m.buys} buy(s) / {m.sells} sell(s)\n"
            )
        lines.append("\n")

    lines.append("## Worst Tokens (by realized PnL)\n\n")
    if not losers:
        lines.append("_No losing tokens in the selected window._\n\n")
    else:
        for m in losers:
            lines.append(
                f"- **{fmt_sol(m.realized_pnl)} SOL** | {m.token_name} ({short(m.token_address)}) "
                f"| ROI {m.roi}% | {m.buys} buy(s) / {m.sells} sell(s)\n"
            )
        lines.append("\n")

    lines.append("## Limitations\n\n")
    lines.append("- Only SOL-paired swaps are counted; token-to-token swaps only move timestamps.\n")
    lines.append("- PnL is realized cash flow, not cost-basis accounting; open positions show as losses.\n")
    lines.append("- Failed transactions and moves below 0.000001 SOL are not counted as trades.\n")

    with out_path.open("w", encoding="utf-8") as f:
        f.writelines(lines)

    return str(out_path)
