"""Domain objects shared by the ceremony and binding services."""

from passkey_mapper.domain.identity import CeremonyKind, Credential, PendingChallenge, UserIdentity
from passkey_mapper.domain.binding import Binding, EncryptedRecord, LedgerEntry
