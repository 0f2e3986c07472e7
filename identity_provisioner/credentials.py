"""Transient password generation for newly created accounts."""

import secrets
import string

CREDENTIAL_LENGTH = 12
CREDENTIAL_SYMBOLS = "!@#$%^&*()-_=+?"
CREDENTIAL_ALPHABET = (
    string.ascii_uppercase + string.ascii_lowercase + string.digits + CREDENTIAL_SYMBOLS
)


def generate_credential(length: int = CREDENTIAL_LENGTH) -> str:
    """Draw ``length`` characters uniformly and independently from the alphabet.

    The account is created with a forced change at next sign-in, so no
    per-class complexity check is applied to the draw.
    """
    if length <= 0:
        raise ValueError("Credential length must be positive")
    return "".join(secrets.choice(CREDENTIAL_ALPHABET) for _ in range(length))
