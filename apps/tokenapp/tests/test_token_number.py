import random
from datetime import date
from itertools import islice

from django.test import SimpleTestCase, override_settings

from apps.tokenapp.conf import get_setting
from apps.tokenapp.services.token_number import (
    candidate_numbers,
    format_token_number,
)

from .helpers import SERVICE_DATE, FixedRandom


class TokenNumberTest(SimpleTestCase):
    def test_format(self):
        self.assertEqual(format_token_number(date(2026, 10, 19), 7), "JS-261019-007")
        self.assertEqual(format_token_number(date(2026, 1, 2), 1234, digits=4), "JS-260102-1234")

    @override_settings(JANSEVA={"TOKEN_PREFIX": "MH"})
    def test_prefix_comes_from_settings(self):
        self.assertEqual(format_token_number(date(2026, 10, 19), 42), "MH-261019-042")

    def test_first_round_uses_three_digit_suffixes(self):
        attempts = get_setting("TOKEN_NUMBER_ATTEMPTS")
        candidates = list(islice(candidate_numbers(SERVICE_DATE, random.Random(1)), attempts))

        self.assertEqual(len(candidates), 20)
        for candidate in candidates:
            self.assertRegex(candidate, r"^JS-261019-\d{3}$")

    def test_second_round_widens_with_default_attempts(self):
        candidates = list(islice(candidate_numbers(SERVICE_DATE, random.Random(1)), 21))
        self.assertRegex(candidates[-1], r"^JS-261019-\d{4}$")

    @override_settings(JANSEVA={"TOKEN_NUMBER_ATTEMPTS": 4})
    def test_suffix_widens_after_each_round(self):
        candidates = list(islice(candidate_numbers(SERVICE_DATE, FixedRandom(5)), 9))

        self.assertEqual(candidates[:4], ["JS-261019-005"] * 4)
        self.assertEqual(candidates[4:8], ["JS-261019-0005"] * 4)
        self.assertEqual(candidates[8], "JS-261019-00005")

