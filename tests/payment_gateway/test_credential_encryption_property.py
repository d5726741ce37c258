"""Property-based tests for gateway credential encryption at rest.

Tests that:
- Stored credentials round-trip through KMS encryption
- Ciphertext never contains the plaintext
- Rotated keys keep old ciphertexts readable until deactivated
"""

import string

import pytest
from hypothesis import given, settings, strategies as st

from tenantpay.core.kms import get_key_manager, is_kms_encrypted
from tenantpay.modules.payment_gateway.credentials import decrypt_credential, encrypt_credential

api_key_strategy = st.text(
    alphabet=string.ascii_letters + string.digits + "_-",
    min_size=16,
    max_size=128,
)

api_secret_strategy = st.text(
    alphabet=string.ascii_letters + string.digits + "!@#$%^&*()_+-=[]{}|;:,.<>?",
    min_size=32,
    max_size=256,
)

unicode_secret_strategy = st.text(
    alphabet=st.characters(blacklist_categories=("Cs",)),
    min_size=1,
    max_size=64,
)


class TestCredentialEncryption:
    """Credentials survive encryption unchanged and unreadable."""

    @given(credential=st.one_of(api_key_strategy, api_secret_strategy, unicode_secret_strategy))
    @settings(max_examples=100)
    def test_round_trip(self, credential: str) -> None:
        encrypted = encrypt_credential(credential)

        assert decrypt_credential(encrypted) == credential
        assert is_kms_encrypted(encrypted)

    @given(credential=api_key_strategy)
    @settings(max_examples=100)
    def test_plaintext_not_in_ciphertext(self, credential: str) -> None:
        encrypted = encrypt_credential(credential)

        assert credential not in encrypted
        assert encrypt_credential(credential) != encrypted

    @given(plaintext=api_key_strategy)
    @settings(max_examples=100)
    def test_plaintext_not_detected_as_encrypted(self, plaintext: str) -> None:
        if not plaintext.startswith("gAAAAA"):
            assert is_kms_encrypted(plaintext) is False

    def test_empty_credential_raises_error(self) -> None:
        with pytest.raises(ValueError):
            encrypt_credential("")

    def test_decrypt_empty_returns_none(self) -> None:
        assert decrypt_credential(None) is None
        assert decrypt_credential("") is None

    def test_tampered_ciphertext_returns_none(self) -> None:
        encrypted = encrypt_credential("sk_test_tamperme0001")
        tampered = encrypted[:-4] + ("AAAA" if not encrypted.endswith("AAAA") else "BBBB")

        assert decrypt_credential(tampered) is None


class TestKeyRotation:
    """Key rotation keeps stored credentials readable."""

    @given(credential=api_key_strategy)
    @settings(max_examples=25, deadline=None)
    def test_rotation_keeps_old_ciphertext_readable(self, credential: str) -> None:
        manager = get_key_manager()
        old_version = manager.current_version
        encrypted_before = encrypt_credential(credential)

        manager.rotate_key("rotated-master-key-for-tests-0001")
        encrypted_after = encrypt_credential(credential)

        assert decrypt_credential(encrypted_before) == credential
        assert decrypt_credential(encrypted_after) == credential

        manager.deactivate_key(old_version)
        assert decrypt_credential(encrypted_before) is None
        assert decrypt_credential(encrypted_after) == credential

    def test_current_key_cannot_be_deactivated(self) -> None:
        manager = get_key_manager()
        assert manager.deactivate_key(manager.current_version) is False
