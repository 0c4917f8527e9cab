import unittest
from datetime import timedelta
from decimal import Decimal

from walletsync.core.models import PersistedTrade, TokenTradeMetrics
from walletsync.services.trade_merger import TradeMerger, index_by_token, to_decimal

from factories import MINT_A, MINT_B, T0, WALLET


def _metrics(**overrides) -> TokenTradeMetrics:
    defaults = dict(
        token_address=MINT_A,
        token_name="Alpha",
        buys=1,
        sells=1,
        invested_sol=Decimal("2"),
        total_sol_received=Decimal("1.5"),
        realized_pnl=Decimal("-0.5"),
        roi=Decimal("-25.00"),
        first_trade=T0,
        last_trade=T0 + timedelta(hours=1),
    )
    defaults.update(overrides)
    return TokenTradeMetrics(**defaults)


class TradeMergerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.merger = TradeMerger()

    def test_create_from_fresh_metrics(self) -> None:
        t = self.merger.create(WALLET, _metrics())
        self.assertEqual(t.id, f"{WALLET}|{MINT_A}")
        self.assertEqual(t.token_name, "Alpha")
        self.assertEqual((t.buys, t.sells), (1, 1))
        self.assertEqual(t.invested_sol, Decimal("2"))
        self.assertEqual(t.roi, Decimal("-25.00"))
        self.assertIsNone(t.invested_sol_usd)

    def test_merging_a_window_twice_doubles_it(self) -> None:
        fresh = _metrics()
        once = self.merger.create(WALLET, fresh)
        twice = self.merger.merge(once, fresh)
        self.assertEqual((twice.buys, twice.sells), (2, 2))
        self.assertEqual(twice.invested_sol, Decimal("4"))
        self.assertEqual(twice.total_sol_received, Decimal("3"))
        self.assertEqual(twice.realized_pnl, Decimal("-1"))
        self.assertEqual(twice.roi, Decimal("-25.00"))

    def test_roi_is_recomputed_from_merged_totals(self) -> None:
        existing = PersistedTrade(
            wallet=WALLET, token_address=MINT_A, buys=1,
            invested_sol=Decimal("1"), total_sol_received=Decimal("3"), realized_pnl=Decimal("2"),
            roi=Decimal("200.00"),
        )
        merged = self.merger.merge(existing, _metrics())
        # pnl 1.5 over invested 3
        self.assertEqual(merged.roi, Decimal("50.00"))

    def test_roi_zero_without_investment(self) -> None:
        fresh = _metrics(buys=0, invested_sol=Decimal("0"), total_sol_received=Decimal("1"), realized_pnl=Decimal("1"))
        t = self.merger.create(WALLET, fresh)
        self.assertEqual(t.roi, Decimal("0.00"))

    def test_unusable_persisted_values_count_as_zero(self) -> None:
        existing = PersistedTrade(
            wallet=WALLET, token_address=MINT_A,
            buys=None, sells="x",
            invested_sol="not-a-number", total_sol_received=None, realized_pnl=float("nan"),
        )
        merged = self.merger.merge(existing, _metrics())
        self.assertEqual((merged.buys, merged.sells), (1, 1))
        self.assertEqual(merged.invested_sol, Decimal("2"))
        self.assertEqual(merged.realized_pnl, Decimal("-0.5"))

    def test_usd_priced_from_merged_totals(self) -> None:
        existing = self.merger.create(WALLET, _metrics(), Decimal("50"))
        self.assertEqual(existing.invested_sol_usd, Decimal("100"))

        merged = self.merger.merge(existing, _metrics(), Decimal("100"))
        # 4 SOL at today's rate, not 100 + 200
        self.assertEqual(merged.invested_sol_usd, Decimal("400"))
        self.assertEqual(merged.realized_pnl_usd, Decimal("-100"))

    def test_no_rate_leaves_usd_empty(self) -> None:
        existing = self.merger.create(WALLET, _metrics(), Decimal("50"))
        merged = self.merger.merge(existing, _metrics(), None)
        self.assertIsNone(merged.invested_sol_usd)
        self.assertIsNone(merged.realized_pnl_usd)

    def test_timestamps_take_earliest_and_latest(self) -> None:
        existing = PersistedTrade(
            wallet=WALLET, token_address=MINT_A,
            first_trade=T0 - timedelta(days=3), last_trade=T0 - timedelta(days=2),
        )
        merged = self.merger.merge(existing, _metrics())
        self.assertEqual(merged.first_trade, T0 - timedelta(days=3))
        self.assertEqual(merged.last_trade, T0 + timedelta(hours=1))

        missing = PersistedTrade(wallet=WALLET, token_address=MINT_A)
        merged = self.merger.merge(missing, _metrics())
        self.assertEqual(merged.first_trade, T0)

    def test_unknown_fresh_name_keeps_stored_name(self) -> None:
        existing = PersistedTrade(wallet=WALLET, token_address=MINT_A, token_name="Alpha")
        merged = self.merger.merge(existing, _metrics(token_name="Unknown"))
        self.assertEqual(merged.token_name, "Alpha")

        renamed = self.merger.merge(existing, _metrics(token_name="Alpha v2"))
        self.assertEqual(renamed.token_name, "Alpha v2")

    def test_merge_all_creates_and_merges(self) -> None:
        existing = index_by_token([self.merger.create(WALLET, _metrics())])
        fresh = {MINT_A: _metrics(), MINT_B: _metrics(token_address=MINT_B, token_name="Beta")}
        out = {t.token_address: t for t in self.merger.merge_all(WALLET, existing, fresh)}
        self.assertEqual(out[MINT_A].buys, 2)
        self.assertEqual(out[MINT_B].buys, 1)
        self.assertEqual(out[MINT_B].wallet, WALLET)


class ToDecimalTests(unittest.TestCase):
    def test_coercion(self) -> None:
        self.assertEqual(to_decimal("1.25"), Decimal("1.25"))
        self.assertEqual(to_decimal(3), Decimal("3"))
        self.assertEqual(to_decimal(0.1), Decimal("0.1"))
        for bad in (None, True, "abc", float("inf"), Decimal("NaN"), object()):
            self.assertEqual(to_decimal(bad), Decimal("0"))


if __name__ == "__main__":
    unittest.main()
