import logging
from typing import Optional

from passkey_mapper.domain.identity import CeremonyKind, PendingChallenge
from passkey_mapper.utils.locks import KeyedLock

log = logging.getLogger(__name__)


class InMemoryChallengeRepository:
    """Pending ceremony challenges.

    Registration challenges occupy a single slot per identity; a newer one
    replaces the older. Authentication challenges are not yet tied to an
    identity and are keyed by their own value. Every pop removes the
    challenge whether or not it turns out to be usable.
    """

    def __init__(self):
        self._registrations = {}
        self._authentications = {}
        self._locks = KeyedLock()

    def save_registration(self, challenge: PendingChallenge) -> None:
        if challenge.kind is not CeremonyKind.REGISTRATION or not challenge.identity_id:
            raise ValueError("registration challenges must name an identity")
        with self._locks.hold(("identity", challenge.identity_id)):
            replaced = self._registrations.get(challenge.identity_id)
            self._registrations[challenge.identity_id] = challenge
        if replaced is not None:
            log.debug(f"Replaced pending registration challenge for {challenge.identity_id}")

    def save_authentication(self, challenge: PendingChallenge) -> None:
        if challenge.kind is not CeremonyKind.AUTHENTICATION:
            raise ValueError("expected an authentication challenge")
        with self._locks.hold(("challenge", challenge.value)):
            self._authentications[challenge.value] = challenge

    def pop_registration(self, identity_id: str, now: float) -> Optional[PendingChallenge]:
        """Consume the identity's registration challenge, or None if absent or expired."""
        with self._locks.hold(("identity", identity_id)):
            challenge = self._registrations.pop(identity_id, None)
        if challenge is None or challenge.is_expired(now):
            return None
        return challenge

    def pop_authentication(self, value: str, now: float) -> Optional[PendingChallenge]:
        """Consume an authentication challenge by value, or None if absent or expired."""
        with self._locks.hold(("challenge", value)):
            challenge = self._authentications.pop(value, None)
        if challenge is None or challenge.is_expired(now):
            return None
        return challenge

    def peek_registration(self, identity_id: str) -> Optional[PendingChallenge]:
        return self._registrations.get(identity_id)

    def sweep(self, now: float) -> int:
        """Drop every expired challenge. Returns how many were removed."""
        removed = 0
        for identity_id, challenge in list(self._registrations.items()):
            if challenge.is_expired(now):
                with self._locks.hold(("identity", identity_id)):
                    current = self._registrations.get(identity_id)
                    if current is not None and current.is_expired(now):
                        del self._registrations[identity_id]
                        removed += 1
        for value, challenge in list(self._authentications.items()):
            if challenge.is_expired(now):
                with self._locks.hold(("challenge", value)):
                    if self._authentications.pop(value, None) is not None:
                        removed += 1
        if removed:
            log.debug(f"Swept {removed} expired challenges")
        return removed

    def __len__(self):
        return len(self._registrations) + len(self._authentications)
