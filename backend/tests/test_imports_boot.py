from __future__ import annotations

import importlib
import unittest


class ImportsBootTestCase(unittest.TestCase):
    def test_import_create_app(self):
        module = importlib.import_module("bazaar")
        self.assertTrue(callable(getattr(module, "create_app", None)))

    def test_import_main_app(self):
        module = importlib.import_module("main")
        self.assertIsNotNone(getattr(module, "app", None))

    def test_import_segments(self):
        for name in ("segment_orders_api", "segment_seller_orders", "segment_admin_escrow"):
            with self.subTest(segment=name):
                self.assertIsNotNone(importlib.import_module(f"bazaar.segments.{name}"))


if __name__ == "__main__":
    unittest.main()
