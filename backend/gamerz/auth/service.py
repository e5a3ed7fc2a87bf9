"""Account storage and credential checks.

New accounts start as ``pending`` players; an administrator moves them to
``approved`` (or ``rejected``/``banned``) with ``set_status``. Rejected and
banned accounts cannot log in. Pending accounts can log in and browse
chatrooms but cannot join or send.

Passwords are stored as ``pbkdf2_sha256$<iterations>$<salt>$<hash>``.
"""
import hashlib
import hmac
import logging
import secrets
import uuid
from typing import List, Optional

import duckdb

from gamerz.store import Database, as_utc, utcnow

from .schemas import ApprovalStatus, User, UserRole

logger = logging.getLogger(__name__)

PBKDF2_ITERATIONS = 200_000

_USER_COLUMNS = "id, username, email, role, status, motivation, created_at, updated_at"


class AccountError(Exception):
    """Base class for account errors."""


class AccountExists(AccountError):
    pass


class InvalidCredentials(AccountError):
    pass


class AccountBlocked(AccountError):
    pass


class UserNotFound(AccountError):
    pass


def hash_password(password: str, *, iterations: int = PBKDF2_ITERATIONS) -> str:
    salt = secrets.token_hex(16)
    digest = hashlib.pbkdf2_hmac("sha256", password.encode("utf-8"), salt.encode("ascii"), iterations)
    return f"pbkdf2_sha256${iterations}${salt}${digest.hex()}"


def verify_password(password: str, encoded: str) -> bool:
    try:
        algorithm, iterations, salt, expected = encoded.split("$", 3)
    except ValueError:
        return False
    if algorithm != "pbkdf2_sha256":
        return False
    digest = hashlib.pbkdf2_hmac(
        "sha256", password.encode("utf-8"), salt.encode("ascii"), int(iterations)
    )
    return hmac.compare_digest(digest.hex(), expected)


def _row_to_user(row: tuple) -> User:
    return User(
        id=row[0],
        username=row[1],
        email=row[2],
        role=UserRole(row[3]),
        status=ApprovalStatus(row[4]),
        motivation=row[5],
        created_at=as_utc(row[6]),
        updated_at=as_utc(row[7]),
    )


class UserService:
    """Account operations backed by the shared DuckDB database."""

    def __init__(self, db: Database, *, iterations: int = PBKDF2_ITERATIONS) -> None:
        self._db = db
        self._iterations = iterations

    def register(
        self,
        username: str,
        email: str,
        password: str,
        motivation: str,
        *,
        role: UserRole = UserRole.PLAYER,
        status: ApprovalStatus = ApprovalStatus.PENDING,
    ) -> User:
        """Create a new account.

        Raises:
            AccountExists: The username or email is already taken.
        """
        email = email.strip().lower()
        username = username.strip()
        existing = self._db.fetchone(
            "SELECT id FROM users WHERE email = ? OR username = ?",
            [email, username],
        )
        if existing:
            raise AccountExists("User with this email or username already exists")

        now = utcnow()
        user_id = str(uuid.uuid4())
        try:
            self._db.execute(
                """
                INSERT INTO users (id, username, email, password_hash, role, status,
                                   motivation, created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                [
                    user_id,
                    username,
                    email,
                    hash_password(password, iterations=self._iterations),
                    role.value,
                    status.value,
                    motivation,
                    now,
                    now,
                ],
            )
        except duckdb.ConstraintException:
            raise AccountExists("User with this email or username already exists")

        logger.info("Registered user %s (%s) with status %s", username, user_id, status.value)
        return User(
            id=user_id,
            username=username,
            email=email,
            role=role,
            status=status,
            motivation=motivation,
            created_at=as_utc(now),
            updated_at=as_utc(now),
        )

    def create_admin(self, username: str, email: str, password: str) -> User:
        return self.register(
            username,
            email,
            password,
            motivation="administrator",
            role=UserRole.ADMIN,
            status=ApprovalStatus.APPROVED,
        )

    def ensure_admin(self, username: str, email: str, password: str) -> bool:
        """Create the bootstrap admin unless the username or email is taken.

        Returns True when the account was created. An existing account is
        left unchanged, whatever its role or password.
        """
        try:
            self.create_admin(username, email, password)
        except AccountExists:
            logger.info("Bootstrap admin %s already exists; leaving it unchanged", email)
            return False
        logger.info("Created bootstrap admin %s", username)
        return True

    def authenticate(self, email: str, password: str) -> User:
        """Check credentials and return the account.

        Raises:
            InvalidCredentials: Unknown email or wrong password.
            AccountBlocked: The account is rejected or banned.
        """
        row = self._db.fetchone(
            f"SELECT {_USER_COLUMNS}, password_hash FROM users WHERE email = ?",
            [email.strip().lower()],
        )
        if row is None:
            raise InvalidCredentials("Invalid credentials")

        user = _row_to_user(row[:8])
        if user.status.is_blocked:
            raise AccountBlocked("Your account has been rejected or banned")
        if not verify_password(password, row[8]):
            raise InvalidCredentials("Invalid credentials")
        return user

    def get(self, user_id: str) -> Optional[User]:
        row = self._db.fetchone(f"SELECT {_USER_COLUMNS} FROM users WHERE id = ?", [user_id])
        return _row_to_user(row) if row else None

    def list_users(self, status: Optional[ApprovalStatus] = None) -> List[User]:
        if status is None:
            rows = self._db.fetchall(f"SELECT {_USER_COLUMNS} FROM users ORDER BY created_at")
        else:
            rows = self._db.fetchall(
                f"SELECT {_USER_COLUMNS} FROM users WHERE status = ? ORDER BY created_at",
                [status.value],
            )
        return [_row_to_user(r) for r in rows]

    def set_status(self, user_id: str, status: ApprovalStatus) -> User:
        """Change an account's approval status.

        Raises:
            UserNotFound: No account with that id.
        """
        if self.get(user_id) is None:
            raise UserNotFound(f"User {user_id} not found")
        self._db.execute(
            "UPDATE users SET status = ?, updated_at = ? WHERE id = ?",
            [status.value, utcnow(), user_id],
        )
        logger.info("User %s status set to %s", user_id, status.value)
        return self.get(user_id)
