import json
from datetime import datetime, timezone

from passkey_mapper.domain.identity import Credential, UserIdentity
from passkey_mapper.extensions import db


def _utcnow():
    return datetime.now(timezone.utc)


class IdentityRecord(db.Model):
    """Model for identities that own passkeys."""

    __tablename__ = "identities"

    id = db.Column(db.String(64), primary_key=True)
    display_name = db.Column(db.String(128), nullable=False)
    created_at = db.Column(db.DateTime, default=_utcnow)

    credentials = db.relationship(
        'CredentialRecord',
        backref='identity',
        lazy=True,
        order_by='CredentialRecord.id',
    )

    def to_domain(self):
        return UserIdentity(
            identity_id=self.id,
            display_name=self.display_name,
            credentials=[c.to_domain() for c in self.credentials],
        )

    def __repr__(self):
        return f'<IdentityRecord {self.id}: {self.display_name}>'


class CredentialRecord(db.Model):
    """Model for storing WebAuthn (passkey) credentials."""

    __tablename__ = "webauthn_credentials"

    id = db.Column(db.Integer, primary_key=True, autoincrement=True)
    identity_id = db.Column(db.String(64), db.ForeignKey('identities.id'), nullable=False)
    credential_id = db.Column(db.String(255), unique=True, nullable=False)
    public_key = db.Column(db.LargeBinary, nullable=False)
    sign_count = db.Column(db.Integer, default=0, nullable=False)
    transports = db.Column(db.Text, default='[]')
    flagged_for_review = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=_utcnow)
    last_used_at = db.Column(db.DateTime, nullable=True)

    def to_domain(self):
        return Credential(
            credential_id=self.credential_id,
            public_key=bytes(self.public_key),
            sign_count=self.sign_count,
            transports=json.loads(self.transports or '[]'),
            flagged_for_review=bool(self.flagged_for_review),
        )

    def __repr__(self):
        return f'<CredentialRecord {self.credential_id} ({self.sign_count})>'
