"""
users.py — User Records

Local user records mirror identities held by the identity provider. They are
created on registration and looked up to resolve the caller's role, which
admins may change.
"""

from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import sessionmaker

from . import config
from .db_models import User, UserRole
from .errors import InvalidEmail, InvalidRole, OrderServiceError, Unexpected, UserAlreadyExists, UserNotFound
from .logging_config import get_logger
from .models import UserResponse
from .retry import RetryPolicy

log = get_logger(__name__)


def to_response(user: User) -> UserResponse:
    return UserResponse(
        id=user.id,
        email=user.email,
        name=user.name,
        role=user.role.value,
        createdAt=user.created_at,
        updatedAt=user.updated_at,
    )


def find_user(session_factory: sessionmaker, user_id: str,
              retry_policy: Optional[RetryPolicy] = None) -> Optional[UserResponse]:
    retry_policy = retry_policy or RetryPolicy()

    def _find():
        with session_factory() as session:
            user = session.get(User, user_id)
            return to_response(user) if user is not None else None

    return retry_policy.run(_find, "fetch user by id")


def update_role(session_factory: sessionmaker, user_id: str, role: str,
                retry_policy: Optional[RetryPolicy] = None) -> UserResponse:
    """
    Sets the role of a user.

    Raises:
        InvalidRole: If `role` is not 'user' or 'admin'.
        UserNotFound: If the user does not exist.
    """
    retry_policy = retry_policy or RetryPolicy()
    try:
        new_role = UserRole(role)
    except ValueError:
        raise InvalidRole(role)

    def _update():
        with session_factory() as session:
            with session.begin():
                user = session.get(User, user_id)
                if user is None:
                    raise UserNotFound(user_id)
                user.role = new_role
                session.flush()
                return to_response(user)

    try:
        user = retry_policy.run(_update, "update user role", give_up_on=(OrderServiceError,))
    except OrderServiceError:
        raise
    except Exception as e:
        log.error(f"[User: {user_id}] Role update failed: {e}", exc_info=True)
        raise Unexpected("Failed to update role", code="ROLE_UPDATE_FAILED") from e
    log.info(f"[User: {user_id}] Role set to {new_role.value}.")
    return user


def register_user(session_factory: sessionmaker, user_id: str, email: Optional[str],
                  name: Optional[str] = None, retry_policy: Optional[RetryPolicy] = None) -> UserResponse:
    """
    Creates the local record for an identity verified by the provider.

    New users get the 'user' role, unless their email is listed in ADMIN_EMAILS.

    Raises:
        InvalidEmail: If the identity carries no usable email.
        UserAlreadyExists: If a record exists for the id or the email.
    """
    retry_policy = retry_policy or RetryPolicy()
    if not email or "@" not in email:
        raise InvalidEmail("The identity has no valid email", details=f"Got {email!r}")
    role = UserRole.ADMIN if email.lower() in config.ADMIN_EMAILS else UserRole.USER

    def _register():
        with session_factory() as session:
            with session.begin():
                if session.get(User, user_id) is not None:
                    raise UserAlreadyExists(user_id)
                user = User(id=user_id, email=email, name=name, role=role)
                session.add(user)
                session.flush()
                return to_response(user)

    try:
        user = retry_policy.run(_register, "create user", give_up_on=(OrderServiceError, IntegrityError))
    except OrderServiceError:
        raise
    except IntegrityError as e:
        # Unique email taken by another subject, or a concurrent registration of the same id.
        raise UserAlreadyExists(user_id) from e
    except Exception as e:
        log.error(f"[User: {user_id}] Registration failed: {e}", exc_info=True)
        raise Unexpected("Failed to register user", code="REGISTRATION_FAILED") from e
    log.info(f"[User: {user_id}] Registered with role {role.value}.")
    return user
