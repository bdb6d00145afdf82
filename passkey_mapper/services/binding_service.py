"""Service that writes and resolves encrypted credential-to-wallet bindings."""

import logging
import time

from passkey_mapper.domain.binding import Binding
from passkey_mapper.errors import IntegrityFailure, NoBindingFound, ValidationError
from passkey_mapper.services.ledger_gateway import APP_TAG, CONTENT_TYPE_TAG, CREDENTIAL_TAG

log = logging.getLogger(__name__)


def _require_text(value, field):
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} must be a non-empty string", details={"field": field})
    return value


class BindingService:
    """Orchestrates the mapping codec and the ledger gateway.

    Authorization is not checked here: a binding may be written for any
    credential id, the ceremony endpoints are what prove possession.
    """

    def __init__(self, codec, ledger, app_identifier="PasskeyArweaveMapper", clock=time.time):
        self.codec = codec
        self.ledger = ledger
        self.app_identifier = app_identifier
        self._clock = clock

    def lookup_tags(self, credential_id):
        return {APP_TAG: self.app_identifier, CREDENTIAL_TAG: credential_id}

    def create_binding(self, credential_id, wallet_address):
        """Encrypt a new binding and append it to the ledger. Returns the entry id."""
        _require_text(credential_id, "credentialID")
        _require_text(wallet_address, "walletAddress")

        binding = Binding(
            credential_id=credential_id,
            wallet_address=wallet_address,
            timestamp=int(self._clock() * 1000),
        )
        payload = self.codec.seal(binding)

        tags = {CONTENT_TYPE_TAG: "application/json"}
        tags.update(self.lookup_tags(credential_id))

        entry_id = self.ledger.write(payload, tags)
        log.info(f"Binding for credential {credential_id} written as entry {entry_id}")
        return entry_id

    def resolve_binding(self, credential_id):
        """Return the latest binding written for a credential.

        Raises NoBindingFound when the ledger holds nothing for it. Codec
        failures propagate unchanged.
        """
        _require_text(credential_id, "credentialID")

        entry_id = self.ledger.query_latest(self.lookup_tags(credential_id))
        if entry_id is None:
            raise NoBindingFound(details={"credentialID": credential_id})

        binding = self._open(entry_id)
        if binding.credential_id != credential_id:
            # A valid record replayed under someone else's tag
            log.critical(
                f"Ledger entry {entry_id} tagged for {credential_id} "
                f"decrypts to a binding for another credential"
            )
            raise IntegrityFailure(details={"entryID": entry_id})
        return binding

    def fetch_binding(self, entry_id):
        """Decode a specific ledger entry, which need not be the latest."""
        _require_text(entry_id, "entryID")
        return self._open(entry_id)

    def _open(self, entry_id):
        payload = self.ledger.fetch(entry_id)
        try:
            return self.codec.open(payload)
        except IntegrityFailure as e:
            log.critical(f"Ledger entry {entry_id} failed decryption: {e.message}")
            raise
