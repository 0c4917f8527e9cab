import unittest
from datetime import timedelta
from decimal import Decimal

from walletsync.adapters.store.postgres_trade_store import PostgresTradeStore, row_to_trade, trade_to_params
from walletsync.core.errors import PersistenceError, ValidationError
from walletsync.core.models import PersistedTrade

from factories import MINT_A, MINT_B, T0, WALLET
from fake_db import FakeConnection


def _trade(mint=MINT_A, **overrides) -> PersistedTrade:
    defaults = dict(
        wallet=WALLET,
        token_address=mint,
        token_name="Alpha",
        first_trade=T0,
        last_trade=T0 + timedelta(hours=1),
        buys=1,
        sells=1,
        invested_sol=Decimal("2.00000000"),
        total_sol_received=Decimal("1.50000000"),
        realized_pnl=Decimal("-0.50000000"),
        roi=Decimal("-25.00"),
        invested_sol_usd=Decimal("200.00000000"),
        realized_pnl_usd=Decimal("-50.00000000"),
    )
    defaults.update(overrides)
    return PersistedTrade(**defaults)


def _row(t: PersistedTrade) -> dict:
    row = trade_to_params(t)
    row["created_at"] = T0
    row["updated_at"] = T0
    return row


class UpsertTests(unittest.TestCase):
    def test_batch_runs_in_one_transaction(self) -> None:
        conn = FakeConnection()
        ok = PostgresTradeStore(conn).upsert_batch([_trade(), _trade(MINT_B)])

        self.assertTrue(ok)
        self.assertEqual(conn.transactions, ["commit"])
        kind, text, params = conn.statements[0]
        self.assertEqual(kind, "executemany")
        self.assertIn("ON CONFLICT (id) DO UPDATE", text)
        self.assertEqual([p["id"] for p in params], [f"{WALLET}|{MINT_A}", f"{WALLET}|{MINT_B}"])
        self.assertEqual(params[0]["invested_sol_usd"], Decimal("200.00000000"))

    def test_empty_batch_is_a_no_op(self) -> None:
        conn = FakeConnection()
        self.assertTrue(PostgresTradeStore(conn).upsert_batch([]))
        self.assertEqual(conn.statements, [])

    def test_failure_rolls_back_and_reports_false(self) -> None:
        conn = FakeConnection(fail_on="executemany")
        with self.assertLogs("walletsync.adapters.store.postgres_trade_store", level="ERROR"):
            ok = PostgresTradeStore(conn).upsert_batch([_trade()])
        self.assertFalse(ok)
        self.assertEqual(conn.transactions, ["rollback"])


class ReadTests(unittest.TestCase):
    def test_read_by_wallet_maps_rows(self) -> None:
        conn = FakeConnection(rows=[_row(_trade()), _row(_trade(MINT_B, token_name=None))])
        trades = PostgresTradeStore(conn).read_by_wallet(WALLET, sort_by="roi", order="asc")

        self.assertEqual([t.token_address for t in trades], [MINT_A, MINT_B])
        self.assertEqual(trades[0].invested_sol, Decimal("2.00000000"))
        self.assertEqual(trades[1].token_name, "Unknown")

        _, text, params = conn.statements[0]
        self.assertEqual(params, (WALLET,))
        self.assertIn("Identifier('roi')", text)
        self.assertIn("ASC", text)
        self.assertIn("NULLS LAST", text)

    def test_read_by_token_filters_on_token(self) -> None:
        conn = FakeConnection(rows=[])
        self.assertEqual(PostgresTradeStore(conn).read_by_token(MINT_A), [])
        _, text, params = conn.statements[0]
        self.assertIn("Identifier('token_address')", text)
        self.assertEqual(params, (MINT_A,))

    def test_unknown_sort_field_is_rejected_before_query(self) -> None:
        conn = FakeConnection()
        store = PostgresTradeStore(conn)
        with self.assertRaises(ValidationError):
            store.read_by_wallet(WALLET, sort_by="id; DROP TABLE trades")
        with self.assertRaises(ValidationError):
            store.read_by_wallet(WALLET, order="sideways")
        self.assertEqual(conn.statements, [])

    def test_read_failure_raises_persistence_error(self) -> None:
        with self.assertRaises(PersistenceError):
            PostgresTradeStore(FakeConnection(fail_on="execute")).read_by_wallet(WALLET)

    def test_latest_timestamp(self) -> None:
        latest = T0 + timedelta(days=2)
        self.assertEqual(PostgresTradeStore(FakeConnection(rows=[{"latest_trade": latest}])).read_latest_timestamp(WALLET), latest)
        self.assertIsNone(PostgresTradeStore(FakeConnection(rows=[{"latest_trade": None}])).read_latest_timestamp(WALLET))
        with self.assertRaises(PersistenceError):
            PostgresTradeStore(FakeConnection(fail_on="execute")).read_latest_timestamp(WALLET)

    def test_null_numerics_read_as_zero(self) -> None:
        t = row_to_trade({"wallet": WALLET, "token_address": MINT_A, "invested_sol": None, "buys": None})
        self.assertEqual(t.invested_sol, Decimal("0"))
        self.assertEqual(t.buys, 0)
        self.assertIsNone(t.invested_sol_usd)

    def test_close_closes_connection(self) -> None:
        conn = FakeConnection()
        PostgresTradeStore(conn).close()
        self.assertTrue(conn.closed)


if __name__ == "__main__":
    unittest.main()
