from flask import Blueprint, jsonify, request

from passkey_mapper.errors import ValidationError
from passkey_mapper.services.container import container
from passkey_mapper.web.passkey import json_body

mapping_bp = Blueprint("mapping", __name__)


def _binding_response(binding, entry_id=None):
    body = {
        "walletAddress": binding.wallet_address,
        "credentialID": binding.credential_id,
        "timestamp": binding.timestamp,
    }
    if entry_id:
        body["entryID"] = entry_id
    return jsonify(body)


@mapping_bp.route("", methods=["POST"])
def create_mapping():
    """Encrypt a credential-to-wallet binding and write it to the ledger."""
    data = json_body()
    entry_id = container().get('binding_service').create_binding(
        data.get("credentialID"), data.get("walletAddress")
    )
    return jsonify({"entryID": entry_id, "success": True}), 201


@mapping_bp.route("", methods=["GET"])
def get_mapping():
    """Resolve the latest binding for a credential."""
    credential_id = request.args.get("credentialID")
    if not credential_id:
        raise ValidationError("Missing credential ID")

    binding = container().get('binding_service').resolve_binding(credential_id)
    return _binding_response(binding)


@mapping_bp.route("/entries/<entry_id>", methods=["GET"])
def get_mapping_entry(entry_id):
    """Decode one specific ledger entry, latest or not."""
    binding = container().get('binding_service').fetch_binding(entry_id)
    return _binding_response(binding, entry_id=entry_id)
