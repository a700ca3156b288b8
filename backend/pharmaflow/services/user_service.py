# Overview: User directory operations (creation, lookup, role membership).

from ..extensions import db
from ..models import User, Role, UserRole
from ..validation import ConflictError, NotFoundError, Violations, check_length, clean_string


def create_user(username: str, email: str, full_name: str | None = None) -> User:
    """
    Create a user directory entry.

    Username and email must be unique or ConflictError will be raised.

    Raises:
        ValidationError: If username/email are malformed
        ConflictError: If username or email already exists
    """
    username = clean_string(username)
    email = clean_string(email)
    full_name = clean_string(full_name) or None

    v = Violations()
    check_length(v, "username", username, min_len=3, max_len=64)
    check_length(v, "email", email, min_len=3, max_len=255)
    if email:
        v.check("@" in email, "email", "must be a valid email address")
    check_length(v, "full_name", full_name, max_len=128, required=False)
    v.raise_if_any()

    existing = db.session.query(User).filter(
        db.or_(User.username == username, User.email == email)
    ).first()

    if existing:
        raise ConflictError("Username or email already exists")

    user = User(username=username, email=email, full_name=full_name, is_active=True)

    db.session.add(user)
    db.session.commit()
    return user


def get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if not user:
        raise NotFoundError(f"User {user_id} not found", details={"user_id": user_id})
    return user


def get_user_by_username(username: str) -> User | None:
    return db.session.query(User).filter_by(username=username).first()


def list_users(*, active_only: bool = False) -> list[User]:
    query = db.session.query(User)
    if active_only:
        query = query.filter(User.is_active.is_(True))
    return query.order_by(User.username).all()


def assign_role(user_id: int, role_name: str) -> UserRole:
    """Assign role to user. Idempotent."""
    get_user(user_id)
    role = db.session.query(Role).filter_by(name=role_name).first()
    if not role:
        raise NotFoundError(f"Role {role_name} not found")

    existing = db.session.query(UserRole).filter_by(
        user_id=user_id,
        role_id=role.id
    ).first()

    if existing:
        return existing

    user_role = UserRole(user_id=user_id, role_id=role.id)

    db.session.add(user_role)
    db.session.commit()
    return user_role
