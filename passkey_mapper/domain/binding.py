"""Wallet bindings and their encrypted ledger representation."""

from dataclasses import dataclass, field
from typing import Dict


@dataclass(frozen=True)
class Binding:
    """Plaintext link between a credential and a wallet address.

    Never persisted as-is; only ever travels inside an EncryptedRecord.
    `timestamp` is in epoch milliseconds.
    """
    credential_id: str
    wallet_address: str
    timestamp: int

    def to_dict(self):
        return {
            "credentialID": self.credential_id,
            "walletAddress": self.wallet_address,
            "timestamp": self.timestamp,
        }


@dataclass(frozen=True)
class EncryptedRecord:
    ciphertext: bytes
    initialization_vector: bytes
    authentication_tag: bytes


@dataclass(frozen=True)
class LedgerEntry:
    entry_id: str
    payload: bytes
    tags: Dict[str, str] = field(default_factory=dict)
    height: int = 0
