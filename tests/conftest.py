import base64
import hashlib
import json
import os
import struct

import cbor2
import pytest
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import ec

from passkey_mapper import create_app
from passkey_mapper.models.challenge_repository import InMemoryChallengeRepository
from passkey_mapper.models.credential_repository import InMemoryCredentialRepository
from passkey_mapper.services.binding_service import BindingService
from passkey_mapper.services.ceremony_service import CeremonyService
from passkey_mapper.services.ledger_gateway import InMemoryLedgerGateway
from passkey_mapper.services.mapping_codec import MappingCodec

RP_ID = "localhost"
ORIGIN = "http://localhost:5000"
TEST_KEY_HEX = "000102030405060708090a0b0c0d0e0f101112131415161718191a1b1c1d1e1f"

FLAG_USER_PRESENT = 0x01
FLAG_USER_VERIFIED = 0x04
FLAG_ATTESTED_DATA = 0x40


def b64url(data):
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


class SoftAuthenticator:
    """Software platform authenticator producing ES256 responses with "none" attestation."""

    def __init__(self, rp_id=RP_ID, origin=ORIGIN):
        self.rp_id = rp_id
        self.origin = origin
        self.private_key = ec.generate_private_key(ec.SECP256R1())
        self.credential_id = os.urandom(16)
        self.sign_count = 0

    @property
    def credential_id_b64(self):
        return b64url(self.credential_id)

    def _rp_id_hash(self):
        return hashlib.sha256(self.rp_id.encode("utf-8")).digest()

    def _cose_public_key(self):
        numbers = self.private_key.public_key().public_numbers()
        return cbor2.dumps({
            1: 2,    # kty: EC2
            3: -7,   # alg: ES256
            -1: 1,   # crv: P-256
            -2: numbers.x.to_bytes(32, "big"),
            -3: numbers.y.to_bytes(32, "big"),
        })

    def _client_data(self, ceremony_type, challenge, origin=None):
        return json.dumps({
            "type": ceremony_type,
            "challenge": challenge,
            "origin": origin or self.origin,
            "crossOrigin": False,
        }).encode("utf-8")

    def register(self, options, origin=None, challenge=None):
        """Answer creation options the way navigator.credentials.create() would."""
        client_data = self._client_data("webauthn.create", challenge or options["challenge"], origin)
        attested = (
            b"\x00" * 16
            + struct.pack(">H", len(self.credential_id))
            + self.credential_id
            + self._cose_public_key()
        )
        auth_data = (
            self._rp_id_hash()
            + bytes([FLAG_USER_PRESENT | FLAG_USER_VERIFIED | FLAG_ATTESTED_DATA])
            + struct.pack(">I", 0)
            + attested
        )
        attestation_object = cbor2.dumps({"fmt": "none", "attStmt": {}, "authData": auth_data})
        return {
            "id": self.credential_id_b64,
            "rawId": self.credential_id_b64,
            "response": {
                "clientDataJSON": b64url(client_data),
                "attestationObject": b64url(attestation_object),
                "transports": ["internal"],
            },
            "type": "public-key",
            "clientExtensionResults": {},
        }

    def authenticate(self, options, sign_count=None, origin=None, key=None):
        """Answer request options the way navigator.credentials.get() would.

        Without an explicit `sign_count` the internal counter is advanced.
        """
        if sign_count is None:
            self.sign_count += 1
            sign_count = self.sign_count

        client_data = self._client_data("webauthn.get", options["challenge"], origin)
        auth_data = (
            self._rp_id_hash()
            + bytes([FLAG_USER_PRESENT | FLAG_USER_VERIFIED])
            + struct.pack(">I", sign_count)
        )
        signer = key or self.private_key
        signature = signer.sign(auth_data + hashlib.sha256(client_data).digest(), ec.ECDSA(hashes.SHA256()))
        return {
            "id": self.credential_id_b64,
            "rawId": self.credential_id_b64,
            "response": {
                "authenticatorData": b64url(auth_data),
                "clientDataJSON": b64url(client_data),
                "signature": b64url(signature),
            },
            "type": "public-key",
            "clientExtensionResults": {},
        }


class FakeClock:
    def __init__(self, now=1_700_000_000.0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, seconds):
        self.now += seconds


@pytest.fixture
def authenticator():
    return SoftAuthenticator()


@pytest.fixture
def make_authenticator():
    return SoftAuthenticator


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def credential_repository():
    return InMemoryCredentialRepository()


@pytest.fixture
def challenge_repository():
    return InMemoryChallengeRepository()


@pytest.fixture
def ceremony_service(credential_repository, challenge_repository, clock):
    return CeremonyService(
        credential_repository,
        challenge_repository,
        rp_id=RP_ID,
        rp_name="Passkey to Arweave Wallet",
        origin=ORIGIN,
        timeout_ms=60000,
        clock=clock,
    )


@pytest.fixture
def codec():
    return MappingCodec(bytes.fromhex(TEST_KEY_HEX))


@pytest.fixture
def ledger():
    return InMemoryLedgerGateway()


@pytest.fixture
def binding_service(codec, ledger, clock):
    return BindingService(codec, ledger, app_identifier="PasskeyArweaveMapper", clock=clock)


@pytest.fixture
def registered(ceremony_service, authenticator):
    """An identity with one registered credential, counter 0."""
    options = ceremony_service.begin_registration(identity_id="U1", display_name="alice")
    credential = ceremony_service.verify_registration(
        "U1", authenticator.credential_id_b64, authenticator.register(options)
    )
    return credential


@pytest.fixture
def app():
    """Create and configure a Flask app for testing."""
    app = create_app({
        'TESTING': True,
        'ENCRYPTION_KEY': TEST_KEY_HEX,
        'WEBAUTHN_RP_ID': RP_ID,
        'WEBAUTHN_ORIGIN': ORIGIN,
        'LEDGER_BACKEND': 'memory',
        'CREDENTIAL_BACKEND': 'memory',
    })
    yield app


@pytest.fixture
def client(app):
    """A test client for the app."""
    return app.test_client()


@pytest.fixture
def runner(app):
    """A test CLI runner for the app."""
    return app.test_cli_runner()
