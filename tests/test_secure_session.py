"""Tests for the secure session protocol."""
from __future__ import annotations

import base64
from datetime import timedelta

import pytest

from rain_helpers import TEST_CVC, TEST_PAN, TEST_PIN, decrypt_for_session, encrypt_for_session, public_pem, recover_secret
from rain_issuing.config import Environment
from rain_issuing.exceptions import (
    CryptographicError,
    DecryptionError,
    EnvironmentMismatchError,
    KeyNotConfiguredError,
    SessionExpiredError,
    ValidationError,
)
from rain_issuing.models.card import CardPin, CardSecrets, EncryptedData
from rain_issuing.secure_session import (
    SESSION_HEADER,
    PublicKeyring,
    SecureSessionProtocol,
    format_pin_block,
    generate_secret,
    parse_pin_block,
)


class TestCreateSession:
    def test_generated_secret_shape(self):
        secret = generate_secret()
        assert len(secret) == 32
        assert secret == secret.lower()
        int(secret, 16)

    def test_session_id_decrypts_to_secret(self, sessions, dev_private_key):
        session = sessions.create_session(Environment.DEV)
        assert recover_secret(dev_private_key, session.session_id) == session.secret
        assert session.headers == {SESSION_HEADER: session.session_id}
        assert session.environment == Environment.DEV

    def test_supplied_secret_used(self, sessions, prod_private_key):
        secret = "0123456789abcdef0123456789abcdef"
        session = sessions.create_session(Environment.PRODUCTION, secret=secret)
        assert recover_secret(prod_private_key, session.session_id) == secret

    def test_session_ids_differ_per_call(self, sessions):
        secret = generate_secret()
        first = sessions.create_session(Environment.DEV, secret=secret)
        second = sessions.create_session(Environment.DEV, secret=secret)
        # OAEP is randomized
        assert first.session_id != second.session_id

    @pytest.mark.parametrize("secret", ["abc", "0123456789ABCDEF0123456789ABCDEF", "z" * 32])
    def test_bad_secret_rejected(self, sessions, secret):
        with pytest.raises(ValidationError):
            sessions.create_session(Environment.DEV, secret=secret)

    def test_secret_hidden_from_repr(self, sessions):
        session = sessions.create_session(Environment.DEV)
        assert session.secret not in repr(session)

    def test_missing_key(self, dev_private_key, clock):
        protocol = SecureSessionProtocol(PublicKeyring.from_pem(dev=public_pem(dev_private_key)), clock=clock)
        with pytest.raises(KeyNotConfiguredError):
            protocol.create_session(Environment.PRODUCTION)


class TestKeyring:
    def test_identical_keys_rejected(self, dev_private_key):
        pem = public_pem(dev_private_key)
        with pytest.raises(ValidationError):
            PublicKeyring.from_pem(dev=pem, production=pem)

    def test_invalid_pem_rejected(self):
        with pytest.raises(ValidationError):
            PublicKeyring.from_pem(dev="not a key")

    def test_environments(self, keyring):
        assert keyring.environments() == [Environment.DEV, Environment.PRODUCTION]


class TestDecrypt:
    def test_round_trip_card_secrets(self, sessions):
        session = sessions.create_session(Environment.DEV)
        secrets = CardSecrets.model_validate({
            "encryptedPan": encrypt_for_session(session.secret, TEST_PAN),
            "encryptedCvc": encrypt_for_session(session.secret, TEST_CVC),
        })
        revealed = sessions.decrypt_card_secrets(session, secrets, Environment.DEV)
        assert revealed.pan == TEST_PAN
        assert revealed.cvc == TEST_CVC
        assert revealed.last4 == "1111"
        assert TEST_PAN not in repr(revealed)
        assert revealed.masked_pan() == "************1111"

    def test_raw_bytes_round_trip(self, sessions):
        session = sessions.create_session(Environment.DEV)
        payload = b"\x00\xff\xfe  raw \n"
        field = EncryptedData(**encrypt_for_session(session.secret, payload))
        assert sessions.decrypt_bytes(session, field, Environment.DEV) == payload

    def test_text_field_keeps_whitespace(self, sessions):
        session = sessions.create_session(Environment.DEV)
        field = EncryptedData(**encrypt_for_session(session.secret, "  Ada Lovelace \n"))
        assert sessions.decrypt_field(session, field, Environment.DEV) == "  Ada Lovelace \n"

    def test_non_utf8_text_field_fails(self, sessions):
        session = sessions.create_session(Environment.DEV)
        field = EncryptedData(**encrypt_for_session(session.secret, b"\x00\xff"))
        with pytest.raises(DecryptionError, match="UTF-8"):
            sessions.decrypt_field(session, field, Environment.DEV)

    def test_card_secrets_tolerate_padding(self, sessions):
        session = sessions.create_session(Environment.DEV)
        secrets = CardSecrets.model_validate({
            "encryptedPan": encrypt_for_session(session.secret, f" {TEST_PAN}\n"),
            "encryptedCvc": encrypt_for_session(session.secret, TEST_CVC),
        })
        assert sessions.decrypt_card_secrets(session, secrets, Environment.DEV).pan == TEST_PAN

    def test_environment_mismatch(self, sessions):
        session = sessions.create_session(Environment.DEV)
        field = EncryptedData(**encrypt_for_session(session.secret, TEST_PAN))
        with pytest.raises(EnvironmentMismatchError) as exc_info:
            sessions.decrypt_field(session, field, Environment.PRODUCTION)
        assert isinstance(exc_info.value, CryptographicError)
        assert exc_info.value.is_final

    def test_tampered_ciphertext_fails(self, sessions):
        session = sessions.create_session(Environment.DEV)
        field = encrypt_for_session(session.secret, TEST_PAN)
        raw = bytearray(base64.b64decode(field["data"]))
        raw[0] ^= 0x01
        tampered = EncryptedData(iv=field["iv"], data=base64.b64encode(bytes(raw)).decode())
        with pytest.raises(DecryptionError):
            sessions.decrypt_field(session, tampered, Environment.DEV)

    def test_wrong_secret_fails(self, sessions):
        session = sessions.create_session(Environment.DEV)
        other = generate_secret()
        field = EncryptedData(**encrypt_for_session(other, TEST_PAN))
        with pytest.raises(DecryptionError):
            sessions.decrypt_field(session, field, Environment.DEV)

    def test_one_bad_field_fails_whole_reveal(self, sessions):
        session = sessions.create_session(Environment.DEV)
        secrets = CardSecrets(
            encrypted_pan=EncryptedData(**encrypt_for_session(session.secret, TEST_PAN)),
            encrypted_cvc=EncryptedData(iv="AAAAAAAAAAAAAAAA", data="bm90IGVub3VnaA=="),
        )
        with pytest.raises(DecryptionError) as exc_info:
            sessions.decrypt_card_secrets(session, secrets, Environment.DEV)
        assert exc_info.value.field == "cvc"

    @pytest.mark.parametrize(
        "iv,data",
        [
            ("not base64!", "AAAA"),
            ("AAAAAAAAAAAAAAAA", "%%%"),
            ("", "AAAAAAAAAAAAAAAAAAAAAAAAAAAAAAAA"),
        ],
    )
    def test_malformed_fields(self, sessions, iv, data):
        session = sessions.create_session(Environment.DEV)
        with pytest.raises(DecryptionError):
            sessions.decrypt_field(session, EncryptedData(iv=iv, data=data), Environment.DEV)

    def test_expired_session(self, keyring, clock):
        protocol = SecureSessionProtocol(keyring, clock=clock, session_ttl=timedelta(minutes=5))
        session = protocol.create_session(Environment.DEV)
        field = EncryptedData(**encrypt_for_session(session.secret, TEST_PAN))
        assert protocol.decrypt_field(session, field, Environment.DEV) == TEST_PAN

        clock.advance(minutes=5)
        with pytest.raises(SessionExpiredError):
            protocol.decrypt_field(session, field, Environment.DEV)


class TestPin:
    def test_pin_block_format(self):
        assert format_pin_block("1234") == "241234FFFFFFFFFF"
        assert format_pin_block("123456789012") == "2C123456789012FF"

    @pytest.mark.parametrize("pin", ["123", "12a4", "1234567890123"])
    def test_invalid_pin(self, pin):
        with pytest.raises(ValidationError):
            format_pin_block(pin)

    def test_parse_pin_block(self):
        assert parse_pin_block("241234FFFFFFFFFF") == "1234"
        assert parse_pin_block("4821") == "4821"

    @pytest.mark.parametrize("block", ["341234FFFFFFFFFF", "24123FFFFFFFFFFF", "241234FFFFFFFF00"])
    def test_malformed_pin_block(self, block):
        with pytest.raises(DecryptionError):
            parse_pin_block(block)

    def test_decrypt_pin(self, sessions):
        session = sessions.create_session(Environment.DEV)
        pin = CardPin(encrypted_pin=EncryptedData(**encrypt_for_session(session.secret, format_pin_block(TEST_PIN))))
        assert sessions.decrypt_pin(session, pin, Environment.DEV) == TEST_PIN

    def test_encrypt_pin_readable_by_issuer(self, sessions):
        session = sessions.create_session(Environment.DEV)
        encrypted = sessions.encrypt_pin(session, "9876", Environment.DEV)
        block = decrypt_for_session(session.secret, encrypted.model_dump())
        assert block == "249876FFFFFFFFFF"

    def test_encrypt_pin_checks_environment(self, sessions):
        session = sessions.create_session(Environment.PRODUCTION)
        with pytest.raises(EnvironmentMismatchError):
            sessions.encrypt_pin(session, "9876", Environment.DEV)
