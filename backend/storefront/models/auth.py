from __future__ import annotations

from ..extensions import db
from storefront.time_utils import to_utc_z


ROLE_USER = "user"
ROLE_CUSTOMER = "customer"
ROLE_RESELLER = "reseller"
ROLE_ADMIN = "admin"

VALID_ROLES = (ROLE_USER, ROLE_CUSTOMER, ROLE_RESELLER, ROLE_ADMIN)

# Reseller application lifecycle; only approved resellers buy at wholesale
RESELLER_PENDING = "pending"
RESELLER_APPROVED = "approved"
RESELLER_REJECTED = "rejected"
RESELLER_SUSPENDED = "suspended"

RESELLER_STATUSES = (RESELLER_PENDING, RESELLER_APPROVED, RESELLER_REJECTED, RESELLER_SUSPENDED)


class User(db.Model):
    """
    Storefront account.

    role selects pricing policy (approved reseller -> wholesale, everyone
    else -> retail) and admin access. reseller_status is only set for
    reseller accounts. Passwords are bcrypt hashes (auth_service).
    """
    __tablename__ = "users"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(128), nullable=False)
    email = db.Column(db.String(255), nullable=False, unique=True, index=True)
    password_hash = db.Column(db.String(255), nullable=False)
    phone = db.Column(db.String(32), nullable=True)

    role = db.Column(db.String(16), nullable=False, default=ROLE_USER, index=True)
    is_active = db.Column(db.Boolean, nullable=False, default=True)

    reseller_status = db.Column(db.String(16), nullable=True, index=True)
    business_name = db.Column(db.String(255), nullable=True)
    gst_number = db.Column(db.String(32), nullable=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    @property
    def is_admin(self) -> bool:
        return self.role == ROLE_ADMIN

    @property
    def is_reseller(self) -> bool:
        """Approved wholesale buyer. Pending or rejected applicants shop at retail."""
        return self.role == ROLE_RESELLER and self.reseller_status == RESELLER_APPROVED

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r} role={self.role}>"

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "email": self.email,
            "phone": self.phone,
            "role": self.role,
            "is_active": self.is_active,
            "reseller_status": self.reseller_status,
            "business_name": self.business_name,
            "created_at": to_utc_z(self.created_at),
        }


class SessionToken(db.Model):
    """
    Bearer session. Only the SHA-256 hash of the token is stored.
    """
    __tablename__ = "session_tokens"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)

    token_hash = db.Column(db.String(64), nullable=False, unique=True, index=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False)
    last_used_at = db.Column(db.DateTime(timezone=True), nullable=False)
    expires_at = db.Column(db.DateTime(timezone=True), nullable=False)

    user_agent = db.Column(db.String(255), nullable=True)
    ip_address = db.Column(db.String(64), nullable=True)

    is_revoked = db.Column(db.Boolean, nullable=False, default=False)
    revoked_at = db.Column(db.DateTime(timezone=True), nullable=True)
    revoked_reason = db.Column(db.String(128), nullable=True)

    user = db.relationship("User", backref=db.backref("sessions", lazy=True))

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "created_at": to_utc_z(self.created_at),
            "last_used_at": to_utc_z(self.last_used_at),
            "expires_at": to_utc_z(self.expires_at),
            "is_revoked": self.is_revoked,
        }
