import secrets
from typing import Optional

import bcrypt

from ..config import Settings


def hash_password(password: str) -> str:
    """Hash a password using bcrypt"""
    password_bytes = password.encode('utf-8')
    salt = bcrypt.gensalt()
    hashed = bcrypt.hashpw(password_bytes, salt)
    return hashed.decode('utf-8')


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a password against its hash"""
    if not hashed_password:
        return False
    password_bytes = plain_password.encode('utf-8')
    hashed_bytes = hashed_password.encode('utf-8')
    try:
        return bcrypt.checkpw(password_bytes, hashed_bytes)
    except ValueError:
        # Malformed hash in configuration
        return False


def verify_admin_credentials(username: Optional[str], password: Optional[str], settings: Settings) -> bool:
    """
    Check HTTP Basic credentials against ADMIN_USERNAME / ADMIN_PASSWORD_HASH.

    With no hash configured nobody can authenticate as administrator.
    """
    if not username or password is None or not settings.admin_password_hash:
        return False
    username_ok = secrets.compare_digest(username.encode('utf-8'), settings.admin_username.encode('utf-8'))
    password_ok = verify_password(password, settings.admin_password_hash)
    return username_ok and password_ok
