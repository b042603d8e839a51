"""
User account management: registration, login, role changes.

Users are system accounts (admin or member role); each registration also
creates a library Member so the person can borrow books.
"""

from typing import List, Optional

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from library_service.auth import hash_password, verify_password
from library_service.errors import Conflict, NotFound, PermissionDenied, ValidationError
from library_service.models import Member, User


MEMBER_EMAIL_DOMAIN = "library.app"


def admin_count(session: Session) -> int:
    return session.query(func.count(User.id)).filter(User.role == "admin").scalar()


def setup_needed(session: Session) -> bool:
    """True until the first administrator has been registered."""
    return admin_count(session) == 0


def get_user(session: Session, user_id: int) -> User:
    user = session.query(User).filter(User.id == user_id).first()
    if user is None:
        raise NotFound(f"User with id {user_id} not found")
    return user


def list_users(session: Session) -> List[User]:
    return session.query(User).order_by(User.id.asc()).all()


def register_user(
    session: Session, username: str, password: str, role: str = "member"
) -> User:
    """
    Create a user and its matching member record in one transaction.

    Raises:
        Conflict: username, or the derived member email, is taken
    """
    if session.query(User).filter(User.username == username).first() is not None:
        raise Conflict(f"Username '{username}' already exists")

    user = User(username=username, password_hash=hash_password(password), role=role)
    member = Member(name=username, email=f"{username.lower()}@{MEMBER_EMAIL_DOMAIN}")
    session.add_all([user, member])
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        raise Conflict("Username or email already exists") from exc
    session.refresh(user)
    return user


def authenticate(session: Session, username: str, password: str) -> Optional[User]:
    user = session.query(User).filter(User.username == username).first()
    if user is None or not verify_password(password, user.password_hash):
        return None
    return user


def update_user(session: Session, user_id: int, username: str, role: str) -> User:
    """
    Rename a user or change its role.

    The last remaining administrator cannot be demoted.
    """
    user = get_user(session, user_id)

    if user.role == "admin" and role != "admin" and admin_count(session) <= 1:
        raise PermissionDenied("Cannot remove the last administrator role")

    clash = session.query(User).filter(User.username == username, User.id != user_id).first()
    if clash is not None:
        raise Conflict(f"Username '{username}' already exists")

    user.username = username
    user.role = role
    try:
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        raise Conflict(f"Username '{username}' already exists") from exc
    session.refresh(user)
    return user


def delete_user(session: Session, user_id: int, acting_user: Optional[User] = None) -> None:
    """
    Delete a user account.

    Raises:
        PermissionDenied: acting_user is deleting itself, or user_id is the
            last administrator
    """
    if acting_user is not None and acting_user.id == user_id:
        raise PermissionDenied("You cannot delete yourself")

    user = get_user(session, user_id)
    if user.role == "admin" and admin_count(session) <= 1:
        raise PermissionDenied("Cannot delete the last administrator")
    session.delete(user)
    session.commit()


def change_password(
    session: Session,
    acting_user: User,
    user_id: int,
    new_password: str,
    current_password: Optional[str] = None,
) -> None:
    """
    Set a new password.

    Admins may reset anyone's password. Other users may only change their
    own, and must confirm the current one.
    """
    user = get_user(session, user_id)

    if acting_user.role != "admin":
        if acting_user.id != user.id:
            raise PermissionDenied("You can only change your own password")
        if not current_password or not verify_password(current_password, user.password_hash):
            raise ValidationError("Current password is incorrect")

    user.password_hash = hash_password(new_password)
    session.commit()
