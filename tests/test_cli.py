import io
import json
import tempfile
import unittest
from contextlib import redirect_stderr, redirect_stdout
from pathlib import Path
from unittest import mock

from walletsync.cli import main as cli
from walletsync.config import settings

from factories import MINT_A, WALLET
from fake_db import FakeConnection

REPO_MIGRATIONS = Path(__file__).resolve().parent.parent / "migrations"


def _run(*argv):
    out, err = io.StringIO(), io.StringIO()
    # keep log records out of the captured JSON
    with redirect_stdout(out), redirect_stderr(err), mock.patch.object(cli, "configure_logging"):
        code = cli.main(list(argv))
    return code, out.getvalue(), err.getvalue()


class CliTests(unittest.TestCase):
    def test_trades_prints_json(self) -> None:
        code, out, _ = _run("--use-static", "trades", "--wallet", WALLET, "--days", "5")
        self.assertEqual(code, 0)
        body = json.loads(out)
        self.assertEqual(body["wallet"], WALLET)
        self.assertEqual(body["transactions"], {})

    def test_trades_writes_outputs(self) -> None:
        with tempfile.TemporaryDirectory() as tmp:
            code, out, _ = _run("--use-static", "--out", tmp, "trades", "--wallet", WALLET)
            self.assertEqual(code, 0)
            self.assertTrue((Path(tmp) / "trades.json").exists())
            summary = (Path(tmp) / "summary.md").read_text(encoding="utf-8")
            self.assertIn("# Wallet Trade Summary", summary)
            self.assertIn(WALLET, summary)

    def test_invalid_wallet_exits_2(self) -> None:
        code, _, err = _run("--use-static", "trades", "--wallet", "nope")
        self.assertEqual(code, 2)
        self.assertIn("Validation error", err)

    def test_sync_without_wallets_exits_2(self) -> None:
        with mock.patch.object(settings, "WALLETS", []):
            code, _, err = _run("--use-static", "sync")
        self.assertEqual(code, 2)
        self.assertIn("No wallets", err)

    def test_sync_static(self) -> None:
        code, out, _ = _run("--use-static", "sync", "--wallet", WALLET)
        self.assertEqual(code, 0)
        self.assertIn('"persisted": true', out)

    def test_missing_api_key_exits_2(self) -> None:
        with mock.patch.object(settings, "HELIUS_API_KEY", None):
            code, _, err = _run("trades", "--wallet", WALLET)
        self.assertEqual(code, 2)
        self.assertIn("HELIUS_API_KEY", err)

    def test_migrate_closes_connection(self) -> None:
        conn = FakeConnection()
        with mock.patch.object(cli, "open_connection", return_value=conn), \
                mock.patch.object(settings, "MIGRATIONS_DIR", str(REPO_MIGRATIONS)):
            code, out, _ = _run("migrate")
        self.assertEqual(code, 0)
        self.assertIn("Applied 2 migration(s)", out)
        self.assertTrue(conn.closed)

    def test_stored_by_token(self) -> None:
        code, out, _ = _run("--use-static", "stored", "--token", MINT_A, "--sort-by", "roi")
        self.assertEqual(code, 0)
        self.assertEqual(json.loads(out), [])

    def test_stored_rejects_bad_token(self) -> None:
        code, _, err = _run("--use-static", "stored", "--token", "bad")
        self.assertEqual(code, 2)
        self.assertIn("token is not a valid address", err)

    def test_no_command_prints_help(self) -> None:
        code, out, _ = _run()
        self.assertEqual(code, 2)
        self.assertIn("usage: walletsync", out)


if __name__ == "__main__":
    unittest.main()
