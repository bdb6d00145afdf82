"""Authenticated encryption of wallet bindings.

Bindings are serialized as canonical JSON and sealed with AES-256-GCM under a
process-wide key. The ledger only ever sees the hex-encoded ciphertext, IV and
tag produced here.
"""

import binascii
import json
import logging
import secrets

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from passkey_mapper.domain.binding import Binding, EncryptedRecord
from passkey_mapper.errors import ConfigurationError, IntegrityFailure, MalformedPayload

log = logging.getLogger(__name__)

KEY_BYTES = 32
IV_BYTES = 16
TAG_BYTES = 16

# Same message for every decryption failure so callers cannot tell a bad tag
# from a bad key or a corrupted IV.
_INTEGRITY_MESSAGE = "Record failed integrity verification"


def generate_encryption_key() -> str:
    """Generate a random AES-256 key, hex encoded, suitable for ENCRYPTION_KEY."""
    return secrets.token_hex(KEY_BYTES)


def load_encryption_key(config) -> bytes:
    """Read the mapping key from configuration.

    Without ENCRYPTION_KEY the application refuses to start unless
    ALLOW_EPHEMERAL_KEY is set, in which case a random key is used for the
    lifetime of the process only.
    """
    raw = config.get('ENCRYPTION_KEY')
    if raw:
        try:
            key = bytes.fromhex(raw.strip())
        except ValueError:
            raise ConfigurationError("ENCRYPTION_KEY must be hex encoded")
        if len(key) != KEY_BYTES:
            raise ConfigurationError(f"ENCRYPTION_KEY must be {KEY_BYTES} bytes ({KEY_BYTES * 2} hex characters)")
        return key

    if not config.get('ALLOW_EPHEMERAL_KEY'):
        raise ConfigurationError(
            "ENCRYPTION_KEY is not set. Provide a 32-byte hex key "
            "(see `flask generate-key`) or enable ALLOW_EPHEMERAL_KEY outside production."
        )

    log.warning(
        "No ENCRYPTION_KEY configured; using an ephemeral key. "
        "Mappings written by this process cannot be decrypted after a restart."
    )
    return secrets.token_bytes(KEY_BYTES)


def canonical_binding_bytes(binding: Binding) -> bytes:
    return json.dumps(binding.to_dict(), sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def _parse_binding(plaintext: bytes) -> Binding:
    try:
        data = json.loads(plaintext.decode("utf-8"))
    except (UnicodeDecodeError, ValueError):
        raise MalformedPayload()

    if not isinstance(data, dict):
        raise MalformedPayload()

    credential_id = data.get("credentialID")
    wallet_address = data.get("walletAddress")
    timestamp = data.get("timestamp")

    if not isinstance(credential_id, str) or not credential_id:
        raise MalformedPayload(details={"field": "credentialID"})
    if not isinstance(wallet_address, str) or not wallet_address:
        raise MalformedPayload(details={"field": "walletAddress"})
    if isinstance(timestamp, bool) or not isinstance(timestamp, int) or timestamp < 0:
        raise MalformedPayload(details={"field": "timestamp"})

    return Binding(credential_id=credential_id, wallet_address=wallet_address, timestamp=timestamp)


class MappingCodec:
    """Encrypts bindings into EncryptedRecords and back."""

    def __init__(self, key: bytes):
        if not isinstance(key, (bytes, bytearray)) or len(key) != KEY_BYTES:
            raise ConfigurationError(f"Mapping key must be {KEY_BYTES} bytes")
        self._aead = AESGCM(bytes(key))

    @classmethod
    def from_config(cls, config):
        return cls(load_encryption_key(config))

    def encode(self, binding: Binding) -> EncryptedRecord:
        iv = secrets.token_bytes(IV_BYTES)
        sealed = self._aead.encrypt(iv, canonical_binding_bytes(binding), None)
        return EncryptedRecord(
            ciphertext=sealed[:-TAG_BYTES],
            initialization_vector=iv,
            authentication_tag=sealed[-TAG_BYTES:],
        )

    def decode(self, record: EncryptedRecord) -> Binding:
        iv = record.initialization_vector
        tag = record.authentication_tag
        if len(iv) != IV_BYTES or len(tag) != TAG_BYTES:
            raise IntegrityFailure(_INTEGRITY_MESSAGE)

        try:
            plaintext = self._aead.decrypt(iv, record.ciphertext + tag, None)
        except InvalidTag:
            raise IntegrityFailure(_INTEGRITY_MESSAGE)

        return _parse_binding(plaintext)

    # Wire format

    @staticmethod
    def to_wire(record: EncryptedRecord) -> bytes:
        """Serialize a record as the JSON body stored on the ledger."""
        return json.dumps({
            "ciphertext": record.ciphertext.hex(),
            "initializationVector": record.initialization_vector.hex(),
            "authenticationTag": record.authentication_tag.hex(),
        }, sort_keys=True, separators=(",", ":")).encode("utf-8")

    @staticmethod
    def from_wire(payload) -> EncryptedRecord:
        """Parse a ledger payload. Anything incomplete is an integrity failure."""
        try:
            if isinstance(payload, (bytes, bytearray)):
                payload = payload.decode("utf-8")
            data = json.loads(payload) if isinstance(payload, str) else payload
            fields = [data["ciphertext"], data["initializationVector"], data["authenticationTag"]]
        except (UnicodeDecodeError, ValueError, TypeError, KeyError):
            raise IntegrityFailure(_INTEGRITY_MESSAGE)

        if not all(isinstance(value, str) and value for value in fields):
            raise IntegrityFailure(_INTEGRITY_MESSAGE)

        try:
            ciphertext, iv, tag = (binascii.unhexlify(value) for value in fields)
        except (binascii.Error, ValueError):
            raise IntegrityFailure(_INTEGRITY_MESSAGE)

        return EncryptedRecord(ciphertext=ciphertext, initialization_vector=iv, authentication_tag=tag)

    def seal(self, binding: Binding) -> bytes:
        return self.to_wire(self.encode(binding))

    def open(self, payload) -> Binding:
        return self.decode(self.from_wire(payload))
