"""Service for passkey (WebAuthn) registration and authentication ceremonies"""

import json
import logging
import secrets
import time
import uuid

from webauthn import (
    generate_authentication_options,
    generate_registration_options,
    options_to_json,
    verify_authentication_response,
    verify_registration_response,
)
from webauthn.helpers import (
    base64url_to_bytes,
    bytes_to_base64url,
    parse_authentication_credential_json,
    parse_client_data_json,
    parse_registration_credential_json,
)
from webauthn.helpers.cose import COSEAlgorithmIdentifier
from webauthn.helpers.structs import (
    AttestationConveyancePreference,
    AuthenticatorAttachment,
    AuthenticatorSelectionCriteria,
    PublicKeyCredentialDescriptor,
    ResidentKeyRequirement,
    UserVerificationRequirement,
)

from passkey_mapper.domain.identity import CeremonyKind, Credential, PendingChallenge, UserIdentity
from passkey_mapper.errors import (
    AttestationInvalid,
    CounterRegression,
    CredentialConflict,
    CredentialFlagged,
    IdentityNotFound,
    NoPendingChallenge,
    UnknownCredential,
    ValidationError,
)

log = logging.getLogger(__name__)

CHALLENGE_BYTES = 32
MAX_IDENTITY_ID_LENGTH = 64

# ES256 and RS256
SUPPORTED_ALGORITHMS = [
    COSEAlgorithmIdentifier.ECDSA_SHA_256,
    COSEAlgorithmIdentifier.RSASSA_PKCS1_v1_5_SHA_256,
]


def _expected_origins(origin):
    if isinstance(origin, str) and "," in origin:
        return [o.strip() for o in origin.split(",") if o.strip()]
    return origin


class CeremonyService:
    """Issues single-use challenges and verifies ceremony responses against them.

    Every verification consumes its challenge before anything else is
    checked, so a challenge can be presented at most once whatever the
    outcome.
    """

    def __init__(self, credential_repository, challenge_repository, rp_id, rp_name, origin,
                 timeout_ms=60000, clock=time.time):
        self.credential_repository = credential_repository
        self.challenge_repository = challenge_repository
        self.rp_id = rp_id
        self.rp_name = rp_name
        self.origin = _expected_origins(origin)
        self.timeout_ms = timeout_ms
        self._clock = clock

    @classmethod
    def from_config(cls, config, credential_repository, challenge_repository):
        return cls(
            credential_repository,
            challenge_repository,
            rp_id=config.get('WEBAUTHN_RP_ID', 'localhost'),
            rp_name=config.get('WEBAUTHN_RP_NAME', 'Passkey to Arweave Wallet'),
            origin=config.get('WEBAUTHN_ORIGIN', 'http://localhost:5000'),
            timeout_ms=config.get('CHALLENGE_TIMEOUT_MS', 60000),
        )

    def _new_challenge(self, kind, identity_id=None):
        now = self._clock()
        raw = secrets.token_bytes(CHALLENGE_BYTES)
        pending = PendingChallenge(
            value=bytes_to_base64url(raw),
            kind=kind,
            created_at=now,
            expires_at=now + self.timeout_ms / 1000.0,
            identity_id=identity_id,
        )
        return raw, pending

    def sweep_expired(self):
        """Remove challenges whose timeout has passed."""
        return self.challenge_repository.sweep(self._clock())

    # Registration

    def begin_registration(self, identity_id=None, display_name=None):
        """Start registration for an identity, creating it if needed.

        Returns WebAuthn creation options as a JSON-ready dict, plus `userId`.
        Any registration challenge already pending for the identity is replaced.
        """
        if identity_id is None:
            identity_id = str(uuid.uuid4())
        elif not isinstance(identity_id, str) or not identity_id or len(identity_id) > MAX_IDENTITY_ID_LENGTH:
            raise ValidationError(f"userId must be a non-empty string of at most {MAX_IDENTITY_ID_LENGTH} characters")

        if display_name is not None and (not isinstance(display_name, str) or not display_name.strip()):
            raise ValidationError("displayName must be a non-empty string")

        self.sweep_expired()

        identity = self.credential_repository.create_identity(UserIdentity(
            identity_id=identity_id,
            display_name=display_name or f"user_{secrets.randbelow(10000)}",
        ))

        raw, pending = self._new_challenge(CeremonyKind.REGISTRATION, identity.identity_id)

        options = generate_registration_options(
            rp_id=self.rp_id,
            rp_name=self.rp_name,
            user_id=identity.identity_id.encode("utf-8"),
            user_name=identity.display_name,
            user_display_name=identity.display_name,
            challenge=raw,
            timeout=self.timeout_ms,
            attestation=AttestationConveyancePreference.NONE,
            authenticator_selection=AuthenticatorSelectionCriteria(
                authenticator_attachment=AuthenticatorAttachment.PLATFORM,
                resident_key=ResidentKeyRequirement.DISCOURAGED,
                user_verification=UserVerificationRequirement.PREFERRED,
            ),
            exclude_credentials=[
                PublicKeyCredentialDescriptor(id=base64url_to_bytes(c.credential_id))
                for c in identity.credentials
            ],
            supported_pub_key_algs=SUPPORTED_ALGORITHMS,
        )

        self.challenge_repository.save_registration(pending)
        log.info(f"Registration challenge issued for {identity.identity_id}")

        result = json.loads(options_to_json(options))
        result["userId"] = identity.identity_id
        return result

    def verify_registration(self, identity_id, credential_id, registration_response):
        """Verify a registration response and store the new credential.

        Raises NoPendingChallenge, AttestationInvalid, CredentialConflict or
        ValidationError.
        """
        pending = self.challenge_repository.pop_registration(identity_id, self._clock())
        if pending is None:
            raise NoPendingChallenge(details={"userId": identity_id})

        if self.credential_repository.get_identity(identity_id) is None:
            raise IdentityNotFound(details={"userId": identity_id})

        try:
            parsed = parse_registration_credential_json(registration_response)
        except Exception as e:
            log.info(f"Malformed registration response for {identity_id}: {e}")
            raise ValidationError("Malformed registration response")

        try:
            verification = verify_registration_response(
                credential=parsed,
                expected_challenge=base64url_to_bytes(pending.value),
                expected_rp_id=self.rp_id,
                expected_origin=self.origin,
                supported_pub_key_algs=SUPPORTED_ALGORITHMS,
            )
        except Exception as e:
            log.warning(f"Registration verification failed for {identity_id}: {e}")
            raise AttestationInvalid(details={"reason": str(e)})

        verified_id = bytes_to_base64url(verification.credential_id)
        if credential_id is not None and credential_id != verified_id:
            raise AttestationInvalid("Declared credential id does not match the attested credential")

        if self.credential_repository.get_by_credential_id(verified_id) is not None:
            log.warning(f"Refused re-registration of existing credential {verified_id} for {identity_id}")
            raise CredentialConflict("Credential is already registered", details={"credentialID": verified_id})

        transports = [t.value for t in (parsed.response.transports or [])]
        credential = Credential(
            credential_id=verified_id,
            public_key=verification.credential_public_key,
            sign_count=0,
            transports=transports,
        )
        stored = self.credential_repository.put(identity_id, credential)
        log.info(f"Registered credential {verified_id} for {identity_id}")
        return stored

    # Authentication

    def begin_authentication(self):
        """Issue a challenge not yet tied to any identity."""
        self.sweep_expired()
        raw, pending = self._new_challenge(CeremonyKind.AUTHENTICATION)

        options = generate_authentication_options(
            rp_id=self.rp_id,
            challenge=raw,
            timeout=self.timeout_ms,
            user_verification=UserVerificationRequirement.PREFERRED,
        )

        self.challenge_repository.save_authentication(pending)
        result = json.loads(options_to_json(options))
        result.setdefault("allowCredentials", [])
        return result

    def verify_authentication(self, authentication_response):
        """Verify an assertion and advance the credential's counter.

        Returns `(identity, credential)` with the updated counter. Raises
        NoPendingChallenge, UnknownCredential, AttestationInvalid,
        CredentialFlagged or CounterRegression.
        """
        try:
            parsed = parse_authentication_credential_json(authentication_response)
            client_data = parse_client_data_json(parsed.response.client_data_json)
        except Exception as e:
            log.info(f"Malformed authentication response: {e}")
            raise ValidationError("Malformed authentication response")

        pending = self.challenge_repository.pop_authentication(
            bytes_to_base64url(client_data.challenge), self._clock()
        )
        if pending is None:
            raise NoPendingChallenge()

        credential_id = bytes_to_base64url(parsed.raw_id)
        found = self.credential_repository.get_by_credential_id(credential_id)
        if found is None:
            raise UnknownCredential(details={"credentialID": credential_id})
        identity, credential = found

        try:
            # Counter monotonicity is enforced by the repository, atomically
            verification = verify_authentication_response(
                credential=parsed,
                expected_challenge=base64url_to_bytes(pending.value),
                expected_rp_id=self.rp_id,
                expected_origin=self.origin,
                credential_public_key=credential.public_key,
                credential_current_sign_count=0,
            )
        except Exception as e:
            log.warning(f"Authentication verification failed for {credential_id}: {e}")
            raise AttestationInvalid(details={"reason": str(e)})

        if credential.flagged_for_review:
            log.warning(f"Refused assertion from credential {credential_id} flagged for review")
            raise CredentialFlagged(details={"credentialID": credential_id})

        try:
            updated = self.credential_repository.update_counter(credential_id, verification.new_sign_count)
        except CounterRegression as e:
            log.critical(
                f"Counter regression on credential {credential_id} "
                f"(stored {e.details.get('storedCounter')}, reported {verification.new_sign_count}); "
                "possible cloned authenticator"
            )
            self.credential_repository.flag_for_review(credential_id, "signature counter regression")
            raise

        log.info(f"Authenticated credential {credential_id} for {identity.identity_id}")
        return identity, updated
