import unittest

from ticker.services.calculator import compare_prices


class CalculatorTest(unittest.TestCase):
    def test_lower_first_price_is_better_deal(self):
        result = compare_prices(97000.0, 98500.0, 1000.0, "USD")

        self.assertEqual(result.better_deal, 1)
        self.assertAlmostEqual(result.btc_1, 1000.0 / 97000.0)
        self.assertAlmostEqual(result.investment_diff, 1000.0 / 97000.0 * 98500.0 - 1000.0)
        self.assertEqual(result.price_diff, 1500.0)
        self.assertAlmostEqual(result.percent_diff, 1500.0 / 97000.0 * 100)

    def test_higher_first_price_points_to_second(self):
        result = compare_prices(98500.0, 97000.0, 1000.0, "USD")

        self.assertEqual(result.better_deal, 2)
        self.assertLess(result.investment_diff, 0)

    def test_eur_prices_are_converted_with_injected_rate(self):
        result = compare_prices(100.0, 200.0, 10.0, "EUR", eur_to_usd=2.0)

        self.assertEqual(result.price_1_usd, 200.0)
        self.assertEqual(result.price_2_usd, 400.0)

    def test_missing_or_non_positive_input_returns_none(self):
        self.assertIsNone(compare_prices(None, 1.0, 1.0))
        self.assertIsNone(compare_prices(1.0, 0.0, 1.0))
        self.assertIsNone(compare_prices(1.0, 1.0, -5.0))


if __name__ == "__main__":
    unittest.main()
