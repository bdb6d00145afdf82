"""Append-only, content-addressed ledger access.

The ledger is consumed through three capabilities: write tagged bytes, find
the most recent entry carrying a set of tags, and fetch an entry's bytes by
id. Writes are never retried here because the store may already have
accepted a write whose response was lost; reads are safe to retry.
"""

import base64
import hashlib
import json
import logging
import threading
from typing import Dict, Optional

from passkey_mapper.domain.binding import LedgerEntry
from passkey_mapper.errors import ConfigurationError, EntryNotFound, LedgerUnavailable
from passkey_mapper.services.api_client import APIClient, APIError, retry

log = logging.getLogger(__name__)

APP_TAG = "App-Name"
CREDENTIAL_TAG = "Credential-ID"
CONTENT_TYPE_TAG = "Content-Type"

TRANSACTION_QUERY = """
query($tags: [TagFilter!], $owners: [String!]) {
  transactions(tags: $tags, owners: $owners, first: 1, sort: HEIGHT_DESC) {
    edges {
      node {
        id
      }
    }
  }
}
"""


def content_address(payload: bytes, tags: Dict[str, str]) -> str:
    """b64url(sha256) over the payload and its sorted tags."""
    canonical = json.dumps(
        {"data": payload.hex(), "tags": sorted(tags.items())},
        separators=(",", ":"),
    ).encode("utf-8")
    digest = hashlib.sha256(canonical).digest()
    return base64.urlsafe_b64encode(digest).decode("ascii").rstrip("=")


class LedgerGateway:
    """Interface to an append-only, tag-queryable store."""

    def write(self, payload: bytes, tags: Dict[str, str]) -> str:
        """Append `payload` with `tags`. Returns the ledger-assigned entry id."""
        raise NotImplementedError("Subclasses must implement this")

    def query_latest(self, tags: Dict[str, str]) -> Optional[str]:
        """Return the id of the most recent entry matching every tag, or None."""
        raise NotImplementedError("Subclasses must implement this")

    def fetch(self, entry_id: str) -> bytes:
        """Return the payload of an entry. Raises EntryNotFound for unknown ids."""
        raise NotImplementedError("Subclasses must implement this")


class InMemoryLedgerGateway(LedgerGateway):
    """Process-local ledger for development and tests.

    Entry ids are content addresses, so replaying an identical write returns
    the id of the entry that already exists instead of appending a duplicate.
    """

    def __init__(self):
        self._entries = []
        self._by_id = {}
        self._lock = threading.Lock()

    def write(self, payload, tags):
        payload = bytes(payload)
        entry_id = content_address(payload, tags)
        with self._lock:
            if entry_id in self._by_id:
                log.info(f"Duplicate ledger write ignored, returning existing entry {entry_id}")
                return entry_id
            entry = LedgerEntry(entry_id=entry_id, payload=payload, tags=dict(tags), height=len(self._entries) + 1)
            self._entries.append(entry)
            self._by_id[entry_id] = entry
        log.debug(f"Ledger entry {entry_id} written at height {entry.height}")
        return entry_id

    def query_latest(self, tags):
        with self._lock:
            for entry in reversed(self._entries):
                if all(entry.tags.get(name) == value for name, value in tags.items()):
                    return entry.entry_id
        return None

    def fetch(self, entry_id):
        with self._lock:
            entry = self._by_id.get(entry_id)
        if entry is None:
            raise EntryNotFound(details={"entryID": entry_id})
        return entry.payload

    def get_entry(self, entry_id) -> Optional[LedgerEntry]:
        with self._lock:
            return self._by_id.get(entry_id)

    def __len__(self):
        with self._lock:
            return len(self._entries)


class ArweaveLedgerGateway(APIClient, LedgerGateway):
    """Arweave-backed ledger.

    Reads go straight to an Arweave gateway (GraphQL for tag queries,
    `GET /{id}` for data). Writes go to an upload relay that holds the wallet
    and signs the transaction; the relay answers with the transaction id.
    """

    def __init__(self, gateway_url, upload_url, api_key=None, owner_address=None, timeout=10):
        if not upload_url:
            raise ConfigurationError("ARWEAVE_UPLOAD_URL is required for the arweave ledger backend")
        super().__init__(gateway_url, timeout=timeout)
        self.upload_url = upload_url
        self.api_key = api_key
        self.owner_address = owner_address
        if not owner_address:
            log.warning(
                "ARWEAVE_OWNER_ADDRESS is not set; entries posted by any wallet with matching "
                "tags can shadow the latest binding"
            )

    @classmethod
    def from_config(cls, config):
        return cls(
            gateway_url=config.get('ARWEAVE_GATEWAY_URL', 'https://arweave.net'),
            upload_url=config.get('ARWEAVE_UPLOAD_URL'),
            api_key=config.get('ARWEAVE_API_KEY'),
            owner_address=config.get('ARWEAVE_OWNER_ADDRESS'),
            timeout=config.get('LEDGER_TIMEOUT', 10),
        )

    def write(self, payload, tags):
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"

        body = {
            "data": bytes(payload).decode("utf-8"),
            "tags": [{"name": name, "value": value} for name, value in tags.items()],
        }

        try:
            result = self.request("POST", "", url=self.upload_url, headers=headers, json=body)
        except APIError as e:
            log.error(f"Ledger write failed: {e.message}")
            raise LedgerUnavailable(f"Ledger write failed: {e.message}", details={"status": e.status_code})

        entry_id = result.get("id") if isinstance(result, dict) else None
        if not entry_id:
            raise LedgerUnavailable("Ledger write returned no transaction id")

        log.info(f"Submitted ledger transaction {entry_id}")
        return entry_id

    def query_latest(self, tags):
        variables = {"tags": [{"name": name, "values": [value]} for name, value in tags.items()]}
        if self.owner_address:
            variables["owners"] = [self.owner_address]

        try:
            result = self._graphql(variables)
        except APIError as e:
            raise LedgerUnavailable(f"Ledger query failed: {e.message}", details={"status": e.status_code})

        try:
            if result.get("errors"):
                raise LedgerUnavailable("Ledger query rejected", details={"errors": result["errors"]})
            edges = result["data"]["transactions"]["edges"]
        except (AttributeError, KeyError, TypeError):
            raise LedgerUnavailable("Unexpected ledger query response")

        if not edges:
            return None
        return edges[0]["node"]["id"]

    def fetch(self, entry_id):
        try:
            data = self._get_data(entry_id)
        except APIError as e:
            if e.status_code == 404:
                raise EntryNotFound(details={"entryID": entry_id})
            raise LedgerUnavailable(f"Ledger fetch failed: {e.message}", details={"status": e.status_code})

        if not data:
            # Accepted but not yet served by the gateway
            raise LedgerUnavailable("Ledger entry is pending", details={"entryID": entry_id})
        return data

    @retry()
    def _graphql(self, variables):
        return self.request("POST", "/graphql", json={"query": TRANSACTION_QUERY, "variables": variables})

    @retry()
    def _get_data(self, entry_id):
        return self.request("GET", f"/{entry_id}", raw=True)


def create_ledger_gateway(config) -> LedgerGateway:
    backend = config.get('LEDGER_BACKEND', 'memory')
    if backend == 'memory':
        log.warning("Using in-memory ledger; entries do not survive a restart")
        return InMemoryLedgerGateway()
    if backend == 'arweave':
        return ArweaveLedgerGateway.from_config(config)
    raise ConfigurationError(f"Unknown LEDGER_BACKEND: {backend}")
