import json
import logging
from dataclasses import replace
from datetime import datetime, timezone
from typing import Optional, Tuple

from sqlalchemy.exc import IntegrityError

from passkey_mapper.domain.identity import Credential, UserIdentity
from passkey_mapper.errors import CounterRegression, CredentialConflict, IdentityNotFound, UnknownCredential
from passkey_mapper.utils.locks import KeyedLock

log = logging.getLogger(__name__)


def _copy_credential(credential: Credential) -> Credential:
    return replace(credential, transports=list(credential.transports))


def _copy_identity(identity: UserIdentity) -> UserIdentity:
    return replace(identity, credentials=[_copy_credential(c) for c in identity.credentials])


def _counter_regression(credential_id, stored, reported):
    return CounterRegression(details={
        "credentialID": credential_id,
        "storedCounter": stored,
        "reportedCounter": reported,
    })


class CredentialRepository:
    """Interface for identity and credential storage."""

    def create_identity(self, identity: UserIdentity) -> UserIdentity:
        """Store a new identity, or return the existing one with the same id."""
        raise NotImplementedError("Subclasses must implement this")

    def get_identity(self, identity_id: str) -> Optional[UserIdentity]:
        raise NotImplementedError("Subclasses must implement this")

    def put(self, identity_id: str, credential: Credential) -> Credential:
        """Upsert a credential within an identity's credential set.

        An existing credential never has its counter lowered or its review
        flag cleared.
        """
        raise NotImplementedError("Subclasses must implement this")

    def get_by_credential_id(self, credential_id: str) -> Optional[Tuple[UserIdentity, Credential]]:
        raise NotImplementedError("Subclasses must implement this")

    def update_counter(self, credential_id: str, new_counter: int) -> Credential:
        """Raise the stored counter; rejects anything not strictly greater."""
        raise NotImplementedError("Subclasses must implement this")

    def flag_for_review(self, credential_id: str, reason: str) -> None:
        raise NotImplementedError("Subclasses must implement this")


class InMemoryCredentialRepository(CredentialRepository):
    """Process-local credential store.

    Lock order is credential id, then identity id.
    """

    def __init__(self):
        self._identities = {}
        self._owners = {}
        self._identity_locks = KeyedLock()
        self._credential_locks = KeyedLock()

    def create_identity(self, identity):
        with self._identity_locks.hold(identity.identity_id):
            existing = self._identities.get(identity.identity_id)
            if existing is None:
                existing = _copy_identity(identity)
                self._identities[identity.identity_id] = existing
                log.info(f"Created identity {identity.identity_id}")
            return _copy_identity(existing)

    def get_identity(self, identity_id):
        with self._identity_locks.hold(identity_id):
            identity = self._identities.get(identity_id)
            return _copy_identity(identity) if identity else None

    def put(self, identity_id, credential):
        credential_id = credential.credential_id
        with self._credential_locks.hold(credential_id):
            with self._identity_locks.hold(identity_id):
                identity = self._identities.get(identity_id)
                if identity is None:
                    raise IdentityNotFound(details={"userId": identity_id})

                owner = self._owners.get(credential_id)
                if owner is not None and owner != identity_id:
                    raise CredentialConflict(details={"credentialID": credential_id})

                stored = _copy_credential(credential)
                for index, existing in enumerate(identity.credentials):
                    if existing.credential_id == credential_id:
                        # Counter and review flag only move forward
                        stored = replace(
                            stored,
                            sign_count=max(existing.sign_count, stored.sign_count),
                            flagged_for_review=existing.flagged_for_review or stored.flagged_for_review,
                        )
                        identity.credentials[index] = stored
                        break
                else:
                    identity.credentials.append(stored)

                self._owners[credential_id] = identity_id
                return _copy_credential(stored)

    def get_by_credential_id(self, credential_id):
        identity_id = self._owners.get(credential_id)
        if identity_id is None:
            return None

        identity = self.get_identity(identity_id)
        if identity is None:
            return None

        credential = identity.find_credential(credential_id)
        if credential is None:
            return None

        return identity, credential

    def update_counter(self, credential_id, new_counter):
        with self._credential_locks.hold(credential_id):
            identity_id = self._owners.get(credential_id)
            if identity_id is None:
                raise UnknownCredential(details={"credentialID": credential_id})

            with self._identity_locks.hold(identity_id):
                identity = self._identities[identity_id]
                for index, existing in enumerate(identity.credentials):
                    if existing.credential_id == credential_id:
                        break
                else:
                    raise UnknownCredential(details={"credentialID": credential_id})

                if new_counter <= existing.sign_count:
                    raise _counter_regression(credential_id, existing.sign_count, new_counter)

                updated = existing.with_counter(new_counter)
                identity.credentials[index] = updated
                return _copy_credential(updated)

    def flag_for_review(self, credential_id, reason):
        with self._credential_locks.hold(credential_id):
            identity_id = self._owners.get(credential_id)
            if identity_id is None:
                raise UnknownCredential(details={"credentialID": credential_id})

            with self._identity_locks.hold(identity_id):
                identity = self._identities[identity_id]
                for index, existing in enumerate(identity.credentials):
                    if existing.credential_id == credential_id:
                        identity.credentials[index] = replace(existing, flagged_for_review=True)
        log.warning(f"Credential {credential_id} flagged for review: {reason}")


class SqlAlchemyCredentialRepository(CredentialRepository):
    """Repository for identities and credentials backed by SQLAlchemy.

    Counter updates are a single conditional UPDATE, so concurrent workers
    sharing the database cannot both accept the same counter value.
    """

    def __init__(self, db) -> None:
        self._session = db.session

    def _identity_record(self, identity_id):
        from passkey_mapper.models.webauthn import IdentityRecord
        return self._session.query(IdentityRecord).filter_by(id=identity_id).one_or_none()

    def _credential_record(self, credential_id):
        from passkey_mapper.models.webauthn import CredentialRecord
        return self._session.query(CredentialRecord).filter_by(credential_id=credential_id).one_or_none()

    def create_identity(self, identity):
        from passkey_mapper.models.webauthn import IdentityRecord

        record = self._identity_record(identity.identity_id)
        if record is None:
            try:
                record = IdentityRecord(id=identity.identity_id, display_name=identity.display_name)
                self._session.add(record)
                self._session.commit()
                log.info(f"Created identity {identity.identity_id}")
            except IntegrityError:
                # Created concurrently by another request
                self._session.rollback()
                record = self._identity_record(identity.identity_id)
        return record.to_domain()

    def get_identity(self, identity_id):
        record = self._identity_record(identity_id)
        return record.to_domain() if record else None

    def put(self, identity_id, credential):
        from passkey_mapper.models.webauthn import CredentialRecord

        if self._identity_record(identity_id) is None:
            raise IdentityNotFound(details={"userId": identity_id})

        record = self._credential_record(credential.credential_id)
        if record is not None and record.identity_id != identity_id:
            raise CredentialConflict(details={"credentialID": credential.credential_id})

        if record is None:
            record = CredentialRecord(identity_id=identity_id, credential_id=credential.credential_id,
                                      sign_count=0, flagged_for_review=False)
            self._session.add(record)

        record.public_key = credential.public_key
        record.sign_count = max(record.sign_count, credential.sign_count)
        record.transports = json.dumps(list(credential.transports))
        record.flagged_for_review = record.flagged_for_review or credential.flagged_for_review

        try:
            self._session.commit()
        except IntegrityError:
            self._session.rollback()
            raise CredentialConflict(details={"credentialID": credential.credential_id})
        return record.to_domain()

    def get_by_credential_id(self, credential_id):
        record = self._credential_record(credential_id)
        if record is None:
            return None
        return record.identity.to_domain(), record.to_domain()

    def update_counter(self, credential_id, new_counter):
        from passkey_mapper.models.webauthn import CredentialRecord

        try:
            updated = (
                self._session.query(CredentialRecord)
                .filter(
                    CredentialRecord.credential_id == credential_id,
                    CredentialRecord.sign_count < new_counter,
                )
                .update(
                    {"sign_count": new_counter, "last_used_at": datetime.now(timezone.utc)},
                    synchronize_session=False,
                )
            )
            self._session.commit()
        except Exception as e:
            self._session.rollback()
            log.error(f"Error updating counter for {credential_id}: {str(e)}")
            raise

        record = self._credential_record(credential_id)
        if record is None:
            raise UnknownCredential(details={"credentialID": credential_id})
        if not updated:
            raise _counter_regression(credential_id, record.sign_count, new_counter)
        return record.to_domain()

    def flag_for_review(self, credential_id, reason):
        record = self._credential_record(credential_id)
        if record is None:
            raise UnknownCredential(details={"credentialID": credential_id})
        record.flagged_for_review = True
        self._session.commit()
        log.warning(f"Credential {credential_id} flagged for review: {reason}")
