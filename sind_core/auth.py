from __future__ import annotations

import logging
from typing import Optional

from storage.base import DataAccess

from .models import User

log = logging.getLogger("auth")


def authenticate(store: DataAccess, username: str, password: str) -> Optional[User]:
    """
    Look the user up (case-insensitive) and compare the stored password
    verbatim. Passwords are kept in plaintext, as the system always has.
    """
    row = store.get_user_by_username((username or "").strip())
    if row is None or row.get("password") != password:
        log.info("Login failed for %r", username)
        return None
    log.info("Login ok for %r", row["username"])
    return User.from_row(row)
