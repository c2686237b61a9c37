"""One-time pickup codes."""

import random


def generate_otp() -> str:
    """4-digit pickup verification code, uniform over 1000-9999. Not a secret."""
    return str(random.randint(1000, 9999))
