"""Storage for identities, credentials and pending challenges."""

from passkey_mapper.models.challenge_repository import InMemoryChallengeRepository
from passkey_mapper.models.credential_repository import (
    CredentialRepository,
    InMemoryCredentialRepository,
    SqlAlchemyCredentialRepository,
)
