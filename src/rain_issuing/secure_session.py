"""Secure retrieval of card secrets (PAN, CVC, PIN).

The caller picks a random 128-bit secret, encrypts it with the environment's
RSA public key and sends the result as the ``SessionId`` header. The API
answers with ``{iv, data}`` pairs encrypted under that secret, which only the
caller can open. Decrypted values live in memory only.

Wire details:
    secret     32 lowercase hex characters (16 random bytes)
    SessionId  base64(RSA-OAEP-SHA1(public_key, base64(bytes.fromhex(secret))))
    field      AES-128-GCM, key = bytes.fromhex(secret), nonce = b64decode(iv),
               b64decode(data) = ciphertext || 16-byte tag
"""
from __future__ import annotations

import base64
import binascii
import logging
import os
import re
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Mapping, Optional, Protocol

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .clock import Clock, SystemClock
from .config import Environment, RainSettings
from .exceptions import (
    DecryptionError,
    EnvironmentMismatchError,
    KeyNotConfiguredError,
    SessionExpiredError,
    ValidationError,
)
from .models.card import CardPin, CardSecrets, EncryptedData

logger = logging.getLogger(__name__)

SESSION_HEADER = "SessionId"
SECRET_PATTERN = re.compile(r"^[0-9a-f]{32}$")
PIN_PATTERN = re.compile(r"^\d{4,12}$")
GCM_TAG_LENGTH = 16
GCM_NONCE_LENGTH = 12


def _oaep() -> padding.OAEP:
    return padding.OAEP(
        mgf=padding.MGF1(algorithm=hashes.SHA1()),
        algorithm=hashes.SHA1(),
        label=None,
    )


def generate_secret() -> str:
    """New random session secret as 32 lowercase hex characters."""
    return uuid.uuid4().hex


# =============================================================================
# Field ciphers
# =============================================================================

class FieldCipher(Protocol):
    """Symmetric cipher used for ``{iv, data}`` fields."""

    def decrypt(self, key: bytes, iv: bytes, data: bytes) -> bytes: ...

    def encrypt(self, key: bytes, iv: bytes, plaintext: bytes) -> bytes: ...


class AesGcmFieldCipher:
    """AES-GCM; ``data`` carries the ciphertext followed by the 16-byte tag."""

    def decrypt(self, key: bytes, iv: bytes, data: bytes) -> bytes:
        if len(data) < GCM_TAG_LENGTH:
            raise DecryptionError(
                f"Encrypted payload is {len(data)} bytes; shorter than the GCM tag"
            )
        try:
            return AESGCM(key).decrypt(iv, data, None)
        except InvalidTag as e:
            raise DecryptionError("Authentication tag mismatch") from e
        except ValueError as e:
            raise DecryptionError(f"Invalid cipher parameters: {e}") from e

    def encrypt(self, key: bytes, iv: bytes, plaintext: bytes) -> bytes:
        return AESGCM(key).encrypt(iv, plaintext, None)


# =============================================================================
# Keys and sessions
# =============================================================================

class PublicKeyring:
    """RSA public keys per environment. Dev and production keys must differ."""

    def __init__(self, keys: Mapping[Environment, rsa.RSAPublicKey]) -> None:
        self._keys = {Environment(env): key for env, key in keys.items()}
        dev = self._keys.get(Environment.DEV)
        prod = self._keys.get(Environment.PRODUCTION)
        if dev is not None and prod is not None and dev.public_numbers() == prod.public_numbers():
            raise ValidationError(
                "Dev and production session keys must be different",
                field="public_keys",
            )

    @classmethod
    def from_pem(
        cls,
        dev: Optional[str | bytes] = None,
        production: Optional[str | bytes] = None,
    ) -> "PublicKeyring":
        keys: dict[Environment, rsa.RSAPublicKey] = {}
        for env, pem in ((Environment.DEV, dev), (Environment.PRODUCTION, production)):
            if pem:
                keys[env] = load_public_key(pem)
        return cls(keys)

    @classmethod
    def from_settings(cls, settings: RainSettings) -> "PublicKeyring":
        return cls.from_pem(
            dev=settings.dev_public_key_pem or None,
            production=settings.production_public_key_pem or None,
        )

    def get(self, environment: Environment) -> rsa.RSAPublicKey:
        key = self._keys.get(Environment(environment))
        if key is None:
            raise KeyNotConfiguredError(Environment(environment).value)
        return key

    def environments(self) -> list[Environment]:
        return sorted(self._keys, key=lambda e: e.value)


def load_public_key(pem: str | bytes) -> rsa.RSAPublicKey:
    """Load an RSA public key from PEM text."""
    data = pem.encode() if isinstance(pem, str) else pem
    try:
        key = serialization.load_pem_public_key(data)
    except ValueError as e:
        raise ValidationError(f"Invalid PEM public key: {e}", field="public_key") from e
    if not isinstance(key, rsa.RSAPublicKey):
        raise ValidationError("Session public key must be an RSA key", field="public_key")
    return key


@dataclass(frozen=True)
class Session:
    """One secret-retrieval session. Never persisted."""

    secret: str = field(repr=False)
    session_id: str
    environment: Environment
    created_at: datetime
    expires_at: Optional[datetime] = None

    @property
    def key(self) -> bytes:
        return bytes.fromhex(self.secret)

    @property
    def headers(self) -> dict[str, str]:
        return {SESSION_HEADER: self.session_id}


@dataclass(frozen=True)
class RevealedCardSecrets:
    """Decrypted PAN and CVC. Both are hidden from repr."""

    pan: str = field(repr=False)
    cvc: str = field(repr=False)

    @property
    def last4(self) -> str:
        return self.pan[-4:]

    def masked_pan(self) -> str:
        return f"{'*' * (len(self.pan) - 4)}{self.last4}"


# =============================================================================
# PIN blocks
# =============================================================================

def format_pin_block(pin: str) -> str:
    """``2`` + PIN length (hex digit) + PIN, right-padded with ``F`` to 16 chars."""
    if not PIN_PATTERN.match(pin):
        raise ValidationError("PIN must be 4 to 12 digits", field="pin")
    return f"2{len(pin):X}{pin}".ljust(16, "F")


def parse_pin_block(block: str) -> str:
    """Inverse of format_pin_block. A bare digit string is returned as-is."""
    if PIN_PATTERN.match(block):
        return block
    if len(block) != 16 or block[0] != "2":
        raise DecryptionError("Decrypted PIN is not a recognised PIN block", field="pin")
    try:
        length = int(block[1], 16)
    except ValueError as e:
        raise DecryptionError("Malformed PIN block length", field="pin") from e
    pin = block[2:2 + length]
    padding_chars = block[2 + length:]
    if not PIN_PATTERN.match(pin) or padding_chars.strip("Ff"):
        raise DecryptionError("Malformed PIN block", field="pin")
    return pin


# =============================================================================
# Protocol
# =============================================================================

class SecureSessionProtocol:
    """Creates sessions and opens the encrypted fields returned for them.

    Example:
        protocol = SecureSessionProtocol(PublicKeyring.from_settings(settings))
        session = protocol.create_session(Environment.DEV)
        secrets = await client.cards.get_secrets(card_id, session.session_id)
        revealed = protocol.decrypt_card_secrets(session, secrets, Environment.DEV)
    """

    def __init__(
        self,
        keyring: PublicKeyring,
        clock: Optional[Clock] = None,
        cipher: Optional[FieldCipher] = None,
        session_ttl: Optional[timedelta] = None,
    ) -> None:
        self._keyring = keyring
        self._clock = clock or SystemClock()
        self._cipher = cipher or AesGcmFieldCipher()
        self._session_ttl = session_ttl

    def create_session(self, environment: Environment, secret: Optional[str] = None) -> Session:
        """Encrypt ``secret`` (or a fresh one) into a SessionId for ``environment``."""
        environment = Environment(environment)
        if secret is None:
            secret = generate_secret()
        elif not SECRET_PATTERN.match(secret):
            raise ValidationError("Session secret must be 32 lowercase hex characters", field="secret")

        public_key = self._keyring.get(environment)
        payload = base64.b64encode(bytes.fromhex(secret))
        session_id = base64.b64encode(public_key.encrypt(payload, _oaep())).decode("ascii")

        now = self._clock.now()
        expires_at = now + self._session_ttl if self._session_ttl is not None else None
        logger.debug("Created %s session", environment.value)
        return Session(
            secret=secret,
            session_id=session_id,
            environment=environment,
            created_at=now,
            expires_at=expires_at,
        )

    def check_session(self, session: Session, environment: Environment) -> None:
        """Reject sessions from another environment or past their expiry."""
        environment = Environment(environment)
        if session.environment != environment:
            raise EnvironmentMismatchError(session.environment.value, environment.value)
        if session.expires_at is not None and self._clock.now() >= session.expires_at:
            raise SessionExpiredError(
                "Session has expired; create a new one",
                details={"expires_at": session.expires_at.isoformat()},
            )

    def decrypt_bytes(
        self,
        session: Session,
        encrypted: EncryptedData,
        environment: Environment,
        field_name: Optional[str] = None,
    ) -> bytes:
        """Decrypt one ``{iv, data}`` field to the exact plaintext bytes."""
        self.check_session(session, environment)
        try:
            iv = base64.b64decode(encrypted.iv, validate=True)
            data = base64.b64decode(encrypted.data, validate=True)
        except (binascii.Error, ValueError) as e:
            raise DecryptionError("Encrypted field is not valid base64", field=field_name) from e
        if not iv:
            raise DecryptionError("Encrypted field has an empty IV", field=field_name)

        try:
            return self._cipher.decrypt(session.key, iv, data)
        except DecryptionError as e:
            raise DecryptionError(e.message, field=field_name) from e

    def decrypt_field(
        self,
        session: Session,
        encrypted: EncryptedData,
        environment: Environment,
        field_name: Optional[str] = None,
    ) -> str:
        """Decrypt one ``{iv, data}`` field to UTF-8 text, unmodified."""
        plaintext = self.decrypt_bytes(session, encrypted, environment, field_name)
        try:
            return plaintext.decode("utf-8")
        except UnicodeDecodeError as e:
            raise DecryptionError("Decrypted field is not valid UTF-8", field=field_name) from e

    def _decrypt_digits(
        self,
        session: Session,
        encrypted: EncryptedData,
        environment: Environment,
        field_name: str,
    ) -> str:
        # Card numbers and PIN blocks are ASCII; surrounding whitespace is not part of them
        plaintext = self.decrypt_bytes(session, encrypted, environment, field_name)
        try:
            return plaintext.decode("ascii").strip()
        except UnicodeDecodeError as e:
            raise DecryptionError(f"Decrypted {field_name} is not ASCII", field=field_name) from e

    def decrypt_card_secrets(
        self,
        session: Session,
        secrets: CardSecrets,
        environment: Environment,
    ) -> RevealedCardSecrets:
        """Decrypt PAN and CVC. Either both succeed or DecryptionError is raised."""
        pan = self._decrypt_digits(session, secrets.encrypted_pan, environment, "pan")
        cvc = self._decrypt_digits(session, secrets.encrypted_cvc, environment, "cvc")
        return RevealedCardSecrets(pan=pan, cvc=cvc)

    def decrypt_pin(self, session: Session, pin: CardPin, environment: Environment) -> str:
        block = self._decrypt_digits(session, pin.encrypted_pin, environment, "pin")
        return parse_pin_block(block)

    def encrypt_pin(self, session: Session, pin: str, environment: Environment) -> EncryptedData:
        """Encrypt a new PIN for ``PUT /issuing/cards/{id}/pin``."""
        self.check_session(session, environment)
        block = format_pin_block(pin)
        iv = os.urandom(GCM_NONCE_LENGTH)
        data = self._cipher.encrypt(session.key, iv, block.encode("ascii"))
        return EncryptedData(
            iv=base64.b64encode(iv).decode("ascii"),
            data=base64.b64encode(data).decode("ascii"),
        )
