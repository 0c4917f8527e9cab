import unittest

from walletsync.core.errors import ValidationError
from walletsync.core.validation import (
    is_valid_wallet,
    validate_stored_query,
    validate_sync_request,
    validate_token_query,
    validate_trades_query,
)

from factories import MINT_A, OTHER_WALLET, WALLET


class ValidationTests(unittest.TestCase):
    def test_wallet_format(self) -> None:
        self.assertTrue(is_valid_wallet(WALLET))
        self.assertFalse(is_valid_wallet(""))
        self.assertFalse(is_valid_wallet(None))
        self.assertFalse(is_valid_wallet("0xabc"))
        # base58 has no 0, O, I or l
        self.assertFalse(is_valid_wallet("O" + WALLET[1:]))

    def test_trades_query(self) -> None:
        q = validate_trades_query(WALLET, "7")
        self.assertEqual((q.wallet, q.days), (WALLET, 7))

        with self.assertRaises(ValidationError) as ctx:
            validate_trades_query(None, 0)
        self.assertEqual(len(ctx.exception.details), 2)

        with self.assertRaises(ValidationError):
            validate_trades_query(WALLET, 91)
        with self.assertRaises(ValidationError):
            validate_trades_query(WALLET, "many")

    def test_sync_request_dedupes_in_order(self) -> None:
        req = validate_sync_request([WALLET, " " + OTHER_WALLET, WALLET, ""], 30)
        self.assertEqual(req.wallets, (WALLET, OTHER_WALLET))

        with self.assertRaises(ValidationError) as ctx:
            validate_sync_request([WALLET, "bogus"], 30)
        self.assertIn("bogus", ctx.exception.details[0])

    def test_stored_query(self) -> None:
        q = validate_stored_query(WALLET, "roi", "asc")
        self.assertEqual((q.sort_by, q.order), ("roi", "ASC"))

        with self.assertRaises(ValidationError) as ctx:
            validate_stored_query(WALLET, "id", "sideways")
        self.assertEqual(len(ctx.exception.details), 2)

    def test_token_query(self) -> None:
        q = validate_token_query(MINT_A, "invested_sol", "desc")
        self.assertEqual((q.token_address, q.sort_by, q.order), (MINT_A, "invested_sol", "DESC"))

        with self.assertRaises(ValidationError) as ctx:
            validate_token_query("not a mint", "roi")
        self.assertIn("token", ctx.exception.details[0])


if __name__ == "__main__":
    unittest.main()
