from flask import Blueprint, jsonify, request

from passkey_mapper.errors import ValidationError
from passkey_mapper.services.container import container

passkey_bp = Blueprint("passkey", __name__)


def json_body(required=True):
    """Return the request's JSON object, or raise ValidationError."""
    data = request.get_json(silent=True)
    if data is None and not required:
        return {}
    if not isinstance(data, dict):
        raise ValidationError("Request body must be a JSON object")
    return data


@passkey_bp.route("/register/options", methods=["POST"])
def registration_options():
    """Start a registration ceremony, creating the identity when no userId is given."""
    data = json_body(required=False)
    options = container().get('ceremony_service').begin_registration(
        identity_id=data.get("userId"),
        display_name=data.get("displayName"),
    )
    return jsonify(options)


@passkey_bp.route("/register/verify", methods=["POST"])
def registration_verify():
    """Verify the authenticator's registration response."""
    data = json_body()
    user_id = data.get("userId")
    credential = data.get("credential")

    if not isinstance(user_id, str) or not user_id:
        raise ValidationError("Missing userId")
    if not isinstance(credential, dict):
        raise ValidationError("Missing credential")

    stored = container().get('ceremony_service').verify_registration(
        user_id, credential.get("id"), credential
    )
    return jsonify({
        "verified": True,
        "credentialID": stored.credential_id,
        "userId": user_id,
    })


@passkey_bp.route("/login/options", methods=["POST"])
def authentication_options():
    """Issue an authentication challenge."""
    return jsonify(container().get('ceremony_service').begin_authentication())


@passkey_bp.route("/login/verify", methods=["POST"])
def authentication_verify():
    """Verify an assertion; the identity is discovered from the credential."""
    data = json_body()
    credential = data.get("credential")
    if not isinstance(credential, dict):
        raise ValidationError("Missing credential")

    identity, stored = container().get('ceremony_service').verify_authentication(credential)
    return jsonify({
        "verified": True,
        "credentialID": stored.credential_id,
        "userId": identity.identity_id,
    })
