"""Human-shareable identifiers for bookings and transactions."""

import secrets

# Crockford-style base32: no I, L, O or U to avoid misreading
ALPHABET = "0123456789ABCDEFGHJKMNPQRSTVWXYZ"
REFERENCE_LENGTH = 16  # 16 x 5 bits = 80 bits of randomness

BOOKING_PREFIX = "PKG"
TRANSACTION_PREFIX = "TXN"


def generate_reference(prefix: str, length: int = REFERENCE_LENGTH) -> str:
    """Generate e.g. ``PKG-7QK2M9X4C1VZ8N3R``."""
    unique_part = "".join(secrets.choice(ALPHABET) for _ in range(length))
    return f"{prefix}-{unique_part}"


def generate_booking_reference() -> str:
    return generate_reference(BOOKING_PREFIX)


def generate_transaction_id() -> str:
    return generate_reference(TRANSACTION_PREFIX)
