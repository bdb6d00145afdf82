"""Identities, passkey credentials and pending ceremony challenges."""

from dataclasses import dataclass, field, replace
from enum import Enum
from typing import List, Optional


class CeremonyKind(Enum):
    REGISTRATION = "registration"
    AUTHENTICATION = "authentication"


@dataclass
class Credential:
    """A registered passkey.

    `credential_id` is the base64url form of the authenticator's raw id and
    `public_key` the COSE-encoded key returned by registration.
    """
    credential_id: str
    public_key: bytes
    sign_count: int = 0
    transports: List[str] = field(default_factory=list)
    flagged_for_review: bool = False

    def with_counter(self, sign_count: int) -> "Credential":
        return replace(self, sign_count=sign_count, transports=list(self.transports))


@dataclass
class UserIdentity:
    identity_id: str
    display_name: str
    credentials: List[Credential] = field(default_factory=list)

    def find_credential(self, credential_id: str) -> Optional[Credential]:
        for credential in self.credentials:
            if credential.credential_id == credential_id:
                return credential
        return None


@dataclass(frozen=True)
class PendingChallenge:
    """A single-use ceremony challenge.

    `value` is the base64url encoding of the raw challenge bytes, which is
    also what the browser echoes back inside clientDataJSON.
    """
    value: str
    kind: CeremonyKind
    created_at: float
    expires_at: float
    identity_id: Optional[str] = None

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at
