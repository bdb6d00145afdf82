"""Tests for the BindingService"""

import json
import logging
from unittest.mock import MagicMock

import pytest

from passkey_mapper.domain.binding import Binding
from passkey_mapper.errors import (
    EntryNotFound,
    IntegrityFailure,
    LedgerUnavailable,
    NoBindingFound,
    ValidationError,
)
from passkey_mapper.services.binding_service import BindingService


def test_create_and_resolve(binding_service, ledger, clock):
    """Test a written binding is the one resolved"""
    entry_id = binding_service.create_binding("cred-A", "addr123")

    binding = binding_service.resolve_binding("cred-A")

    assert binding == Binding("cred-A", "addr123", int(clock.now * 1000))
    assert ledger.get_entry(entry_id).tags == {
        "Content-Type": "application/json",
        "App-Name": "PasskeyArweaveMapper",
        "Credential-ID": "cred-A",
    }


def test_latest_binding_wins(binding_service, clock):
    """Test rebinding supersedes without removing the older entry"""
    first = binding_service.create_binding("cred-A", "addr123")
    clock.advance(5)
    second = binding_service.create_binding("cred-A", "addr999")

    assert first != second
    assert binding_service.resolve_binding("cred-A").wallet_address == "addr999"
    assert binding_service.fetch_binding(first).wallet_address == "addr123"
    assert binding_service.fetch_binding(second).wallet_address == "addr999"


def test_ledger_holds_only_ciphertext(binding_service, ledger):
    entry_id = binding_service.create_binding("cred-A", "addr123")
    stored = ledger.get_entry(entry_id).payload

    assert b"addr123" not in stored
    assert set(json.loads(stored)) == {"ciphertext", "initializationVector", "authenticationTag"}


def test_bindings_are_scoped_per_credential(binding_service):
    binding_service.create_binding("cred-A", "addr123")
    binding_service.create_binding("cred-B", "addr456")

    assert binding_service.resolve_binding("cred-A").wallet_address == "addr123"
    assert binding_service.resolve_binding("cred-B").wallet_address == "addr456"


def test_bindings_are_scoped_per_app(codec, ledger, binding_service):
    binding_service.create_binding("cred-A", "addr123")
    other_app = BindingService(codec, ledger, app_identifier="SomeOtherApp")

    with pytest.raises(NoBindingFound):
        other_app.resolve_binding("cred-A")


def test_resolve_without_binding(binding_service):
    with pytest.raises(NoBindingFound) as exc_info:
        binding_service.resolve_binding("cred-unknown")
    assert exc_info.value.status_code == 404


@pytest.mark.parametrize("credential_id, wallet_address", [
    ("", "addr123"),
    ("cred-A", ""),
    ("cred-A", "   "),
    (None, "addr123"),
    ("cred-A", 42),
])
def test_create_rejects_empty_fields(binding_service, ledger, credential_id, wallet_address):
    with pytest.raises(ValidationError):
        binding_service.create_binding(credential_id, wallet_address)
    assert len(ledger) == 0


def test_tampered_entry_is_integrity_failure(binding_service, ledger, caplog):
    """Test corrupted ciphertext surfaces as IntegrityFailure and is logged"""
    binding_service.create_binding("cred-A", "addr123")
    payload = json.loads(ledger.fetch(ledger.query_latest(binding_service.lookup_tags("cred-A"))))
    payload["authenticationTag"] = "00" * 16
    ledger.write(json.dumps(payload).encode(), {
        "Content-Type": "application/json",
        **binding_service.lookup_tags("cred-A"),
    })

    with caplog.at_level(logging.CRITICAL):
        with pytest.raises(IntegrityFailure):
            binding_service.resolve_binding("cred-A")
    assert "failed decryption" in caplog.text


def test_garbage_entry_is_integrity_failure(binding_service, ledger):
    ledger.write(b"not a record", binding_service.lookup_tags("cred-A"))

    with pytest.raises(IntegrityFailure):
        binding_service.resolve_binding("cred-A")


def test_replayed_record_for_other_credential(binding_service, ledger, codec):
    """Test a valid record re-tagged for another credential is rejected"""
    foreign = codec.seal(Binding("cred-B", "addr-attacker", 1))
    ledger.write(foreign, binding_service.lookup_tags("cred-A"))

    with pytest.raises(IntegrityFailure):
        binding_service.resolve_binding("cred-A")


def test_fetch_unknown_entry(binding_service):
    with pytest.raises(EntryNotFound):
        binding_service.fetch_binding("missing")


def test_ledger_errors_propagate(codec):
    ledger = MagicMock()
    ledger.query_latest.side_effect = LedgerUnavailable()
    service = BindingService(codec, ledger)

    with pytest.raises(LedgerUnavailable):
        service.resolve_binding("cred-A")


def test_write_failure_propagates(codec):
    ledger = MagicMock()
    ledger.write.side_effect = LedgerUnavailable()
    service = BindingService(codec, ledger)

    with pytest.raises(LedgerUnavailable):
        service.create_binding("cred-A", "addr123")
    ledger.write.assert_called_once()
