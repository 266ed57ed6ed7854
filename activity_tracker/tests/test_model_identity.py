import unittest

from activity_tracker.model_identity import estimate_cost, model_family, short_model_name


class ModelIdentityTests(unittest.TestCase):
    def test_model_family_from_raw_id(self) -> None:
        self.assertEqual(model_family("claude-opus-4-6"), "opus")
        self.assertEqual(model_family("claude-3-5-haiku-20241022"), "haiku")
        self.assertEqual(model_family("gpt-5"), "")

    def test_estimate_cost_uses_family_rates(self) -> None:
        self.assertAlmostEqual(estimate_cost("claude-opus-4-6", 1_000_000, 0), 15.0)
        self.assertAlmostEqual(estimate_cost("claude-haiku-4-5", 0, 1_000_000), 4.0)
        self.assertAlmostEqual(estimate_cost("unknown", 1_000_000, 1_000_000, 1_000_000), 18.3)

    def test_short_model_name(self) -> None:
        self.assertEqual(short_model_name("claude-opus-4-6"), "Opus 4.6")
        self.assertEqual(short_model_name("claude-sonnet-4-5-20250929"), "Sonnet 4.5")
        self.assertEqual(short_model_name("claude-opus-4-20250514"), "Opus 4")
        self.assertEqual(short_model_name("gpt-5"), "gpt-5")


if __name__ == "__main__":
    unittest.main()
