import string

import pytest

from identity_provisioner.credentials import (
    CREDENTIAL_ALPHABET,
    CREDENTIAL_LENGTH,
    CREDENTIAL_SYMBOLS,
    generate_credential,
)


def test_alphabet_spans_four_character_classes():
    assert set(string.ascii_uppercase) <= set(CREDENTIAL_ALPHABET)
    assert set(string.ascii_lowercase) <= set(CREDENTIAL_ALPHABET)
    assert set(string.digits) <= set(CREDENTIAL_ALPHABET)
    assert set(CREDENTIAL_SYMBOLS) <= set(CREDENTIAL_ALPHABET)
    assert len(set(CREDENTIAL_ALPHABET)) == len(CREDENTIAL_ALPHABET) >= 70


def test_generated_credential_has_fixed_length_and_alphabet():
    for _ in range(200):
        credential = generate_credential()
        assert len(credential) == CREDENTIAL_LENGTH == 12
        assert set(credential) <= set(CREDENTIAL_ALPHABET)


def test_generations_do_not_repeat():
    credentials = {generate_credential() for _ in range(10_000)}
    assert len(credentials) == 10_000


def test_custom_length():
    assert len(generate_credential(20)) == 20


def test_rejects_non_positive_length():
    with pytest.raises(ValueError):
        generate_credential(0)
