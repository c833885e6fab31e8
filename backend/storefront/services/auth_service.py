# Overview: Service-layer operations for auth; encapsulates business logic and database work.

"""
Authentication Service

WHY: Every order and payment must be attributable to an account. Uses
bcrypt for password hashing and validates password strength.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters, with upper, lower, digit and special char
- Session tokens managed separately (see session_service.py)
- Self-registration yields role "user". Reseller self-registration yields a
  pending reseller that buys at retail and cannot sign in until an admin
  approves it. Admins (and pre-approved resellers) come from the CLI
"""

import re

import bcrypt
from flask import current_app

from ..extensions import db
from ..errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from ..models import User
from ..models.auth import (
    ROLE_USER,
    VALID_ROLES,
    ROLE_ADMIN,
    ROLE_RESELLER,
    RESELLER_PENDING,
    RESELLER_APPROVED,
    RESELLER_REJECTED,
    RESELLER_SUSPENDED,
)
from . import session_service


EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Raises PasswordValidationError if requirements not met.
    """
    if not password or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>_\-]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """
    Hash password using bcrypt with cost factor 12.

    Password is validated for strength before hashing.
    """
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    A malformed stored hash verifies as False rather than raising.
    """
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def normalize_email(email: str | None) -> str:
    return (email or "").strip().lower()


def create_user(
    name: str,
    email: str,
    password: str,
    phone: str | None = None,
    role: str = ROLE_USER,
    reseller_status: str | None = None,
    business_name: str | None = None,
    gst_number: str | None = None,
) -> User:
    """
    Create new user with bcrypt password hashing.

    A reseller created without an explicit reseller_status (CLI, admin) is
    approved; self-service applications pass RESELLER_PENDING.

    Raises:
        ValidationError: bad name/email/role or weak password
        ConflictError: email already registered
    """
    name = (name or "").strip()
    email = normalize_email(email)

    if not name:
        raise ValidationError("Name is required")
    if not EMAIL_RE.match(email):
        raise ValidationError("A valid email is required")
    if role not in VALID_ROLES:
        raise ValidationError(f"Invalid role: {role}")
    if role == ROLE_RESELLER:
        reseller_status = reseller_status or RESELLER_APPROVED
    else:
        reseller_status = None

    if db.session.query(User).filter_by(email=email).first():
        raise ConflictError("User already exists with this email")

    user = User(
        name=name,
        email=email,
        password_hash=hash_password(password),
        phone=(phone or "").strip() or None,
        role=role,
        reseller_status=reseller_status,
        business_name=(business_name or "").strip() or None,
        gst_number=(gst_number or "").strip().upper() or None,
    )

    db.session.add(user)
    db.session.commit()
    return user


def authenticate(email: str, password: str) -> User | None:
    """
    Authenticate user with email and password.

    Returns User if credentials valid and the account is active, None otherwise.
    """
    user = db.session.query(User).filter(
        User.email == normalize_email(email),
        User.is_active.is_(True),
    ).first()

    if not user or not verify_password(password or "", user.password_hash):
        return None

    return user


def ensure_admin(name: str, email: str, password: str) -> tuple[User, bool]:
    """
    Idempotently make sure an admin account exists.

    Returns (user, created). An existing account with that email is
    promoted to admin rather than duplicated.
    """
    existing = db.session.query(User).filter_by(email=normalize_email(email)).first()
    if existing:
        if existing.role != ROLE_ADMIN:
            existing.role = ROLE_ADMIN
            db.session.commit()
        return existing, False
    return create_user(name=name, email=email, password=password, role=ROLE_ADMIN), True


# =============================================================================
# RESELLER ONBOARDING
# =============================================================================

# Statuses an admin may set on a reseller application
RESELLER_DECISIONS = (RESELLER_APPROVED, RESELLER_REJECTED, RESELLER_SUSPENDED)

SIGN_IN_BLOCKED = {
    RESELLER_PENDING: "Your reseller account is pending approval",
    RESELLER_REJECTED: "Your reseller application was rejected",
    RESELLER_SUSPENDED: "Your reseller account has been suspended",
}


def register_reseller(
    name: str,
    email: str,
    password: str,
    phone: str | None = None,
    business_name: str | None = None,
    gst_number: str | None = None,
) -> User:
    """Submit a reseller application; the account stays pending until reviewed."""
    if not (business_name or "").strip():
        raise ValidationError("Business name is required")
    return create_user(
        name=name,
        email=email,
        password=password,
        phone=phone,
        role=ROLE_RESELLER,
        reseller_status=RESELLER_PENDING,
        business_name=business_name,
        gst_number=gst_number,
    )


def ensure_can_sign_in(user: User) -> None:
    """Raises ForbiddenError for resellers that are not approved."""
    if user.role != ROLE_RESELLER or user.reseller_status == RESELLER_APPROVED:
        return
    message = SIGN_IN_BLOCKED.get(user.reseller_status, "Your reseller account is not active")
    raise ForbiddenError(message, details={"reseller_status": user.reseller_status})


def list_pending_resellers() -> list[User]:
    return (
        db.session.query(User)
        .filter(User.role == ROLE_RESELLER, User.reseller_status == RESELLER_PENDING)
        .order_by(User.created_at.asc(), User.id.asc())
        .all()
    )


def set_reseller_status(admin: User, user_id: int, status) -> User:
    """
    Approve, reject or suspend a reseller.

    Leaving the approved state revokes the reseller's sessions so wholesale
    access ends immediately.

    Raises:
        ValidationError: status is not a reviewable decision
        NotFoundError: no reseller with that id
    """
    status = str(status or "").strip().lower()
    if status not in RESELLER_DECISIONS:
        raise ValidationError(
            "Invalid reseller status",
            details={"allowed": list(RESELLER_DECISIONS)},
        )

    user = db.session.get(User, user_id)
    if user is None or user.role != ROLE_RESELLER:
        raise NotFoundError("Reseller not found")

    previous = user.reseller_status
    user.reseller_status = status
    db.session.commit()

    if status != RESELLER_APPROVED:
        session_service.revoke_all_user_sessions(user.id, reason=f"Reseller {status}")

    current_app.logger.info(
        "Reseller %s moved %s -> %s by admin %s", user.id, previous, status, admin.id
    )
    return user
