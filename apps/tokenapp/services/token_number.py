"""
Human readable token numbers: ``<PREFIX>-YYMMDD-NNN``.

The date part is the appointment date and the suffix is random. Callers check
each candidate against the store and stop at the first free one, so a full
round of ``TOKEN_NUMBER_ATTEMPTS`` candidates is only consumed when every
draw collided. The suffix then gains a digit for the next round.
"""

import logging
import random

from ..conf import get_setting

logger = logging.getLogger(__name__)

SUFFIX_DIGITS = 3


def format_token_number(appointment_date, sequence, digits=SUFFIX_DIGITS):
    prefix = get_setting("TOKEN_PREFIX")
    date_str = appointment_date.strftime("%y%m%d")
    return f"{prefix}-{date_str}-{sequence:0{digits}d}"


def candidate_numbers(appointment_date, rng=None):
    """
    Yield token number candidates, widening the suffix after each round of
    ``TOKEN_NUMBER_ATTEMPTS`` draws.
    """
    rng = rng or random
    attempts = get_setting("TOKEN_NUMBER_ATTEMPTS")
    digits = SUFFIX_DIGITS

    while True:
        for _ in range(attempts):
            yield format_token_number(appointment_date, rng.randrange(10**digits), digits)
        digits += 1
        logger.warning(
            f"Token numbers for {appointment_date} crowded after {attempts} attempts, "
            f"widening suffix to {digits} digits"
        )

