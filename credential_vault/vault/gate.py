"""
Access Gate: Session and PIN checks in front of every vault operation.

A request moves through:
    unauthenticated → authenticated (session token verified)
                    → PIN-verified (only for PIN-gated operations)
                    → authorized

Any failure stops the request before the codec or the store is touched.

PIN policy:
    Every operation that can reveal, create, change or remove a stored
    secret requires the PIN: ``add``, ``reveal``, ``update``, ``delete``.
    ``list``, ``generate``, ``strength`` and ``breach_check`` need a valid
    session only.

Security Note:
    Never log tokens or PINs. Only log user ids and outcomes.
"""
import asyncio
import logging
from typing import Any, Optional

import jwt
import bcrypt
import asyncpg

from ..exceptions import AuthenticationError, StorageError, ValidationError
from .models import Identity

logger = logging.getLogger("credential_vault.vault")

PIN_GATED_OPERATIONS = frozenset({"add", "reveal", "update", "delete"})
SESSION_OPERATIONS = frozenset({"list", "generate", "strength", "breach_check"})
OPERATIONS = PIN_GATED_OPERATIONS | SESSION_OPERATIONS

_DRIVER_ERRORS = (
    asyncpg.PostgresError, asyncpg.InterfaceError, OSError, asyncio.TimeoutError,
)

# bcrypt only looks at the first 72 bytes of its input.
MAX_PIN_BYTES = 72

# ---------------------------------------------------------------------------
# SQL statements
# ---------------------------------------------------------------------------

_SELECT_LIVE_SESSION = """
SELECT 1
FROM sessions
WHERE user_id = $1 AND token = $2 AND expires_at > NOW()
"""

_SELECT_PIN_HASH = """
SELECT pin_hash FROM users WHERE id = $1
"""


async def _fetchval(db_pool: Any, query: str, *args: Any) -> Any:
    try:
        async with db_pool.acquire() as conn:
            return await conn.fetchval(query, *args)
    except _DRIVER_ERRORS as err:
        logger.error("Access gate lookup failed: %s", err)
        raise StorageError("Identity storage is unavailable") from err


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------

class SessionVerifier:
    """Verify a bearer token and bind it to a user id.

    The token must be a valid signed JWT carrying an ``id`` claim and, when
    ``require_session_record`` is set, must match a live row in ``sessions``
    (logging out deletes the row, revoking the token early).
    """

    def __init__(
        self,
        db_pool: Any,
        secret: str,
        algorithm: str = "HS256",
        require_session_record: bool = True,
    ):
        self._db = db_pool
        self._secret = secret
        self._algorithm = algorithm
        self._require_session_record = require_session_record

    async def verify(self, token: Optional[str]) -> Identity:
        """Return the identity proven by ``token``.

        Raises:
            AuthenticationError: If the token is missing, malformed, badly
                signed, expired or no longer backed by a session.
        """
        if not token:
            raise AuthenticationError("No token provided")
        try:
            payload = jwt.decode(token, self._secret, algorithms=[self._algorithm])
        except jwt.ExpiredSignatureError as err:
            raise AuthenticationError("Token expired") from err
        except jwt.InvalidTokenError as err:
            raise AuthenticationError("Invalid token") from err

        user_id = payload.get("id")
        if isinstance(user_id, bool) or not isinstance(user_id, int):
            raise AuthenticationError("Invalid token")

        if self._require_session_record:
            live = await _fetchval(self._db, _SELECT_LIVE_SESSION, user_id, token)
            if live is None:
                logger.info("Rejected token without live session: user=%s", user_id)
                raise AuthenticationError("Session expired")
        return Identity(user_id=user_id, token=token)


# ---------------------------------------------------------------------------
# PIN
# ---------------------------------------------------------------------------

class PinHasher:
    """bcrypt hashing and verification of secondary PINs."""

    def __init__(self, rounds: int = 10):
        self.rounds = rounds

    def hash(self, pin: str) -> str:
        """Hash a PIN with a fresh salt at the configured work factor."""
        return bcrypt.hashpw(
            pin.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)
        ).decode("ascii")

    def matches(self, pin: str, pin_hash: str) -> bool:
        """Compare a PIN against a stored bcrypt hash.

        A stored hash bcrypt cannot parse never matches.
        """
        try:
            return bcrypt.checkpw(pin.encode("utf-8"), pin_hash.encode("ascii"))
        except ValueError:
            logger.error("Stored PIN hash is not a valid bcrypt hash")
            return False


class PinVerifier:
    """Check a submitted PIN against the stored hash of a user."""

    def __init__(self, db_pool: Any, hasher: Optional[PinHasher] = None):
        self._db = db_pool
        self._hasher = hasher or PinHasher()

    async def verify(self, user_id: int, pin: Optional[str]) -> None:
        """Verify ``pin`` for ``user_id``.

        Raises:
            ValidationError: If no PIN was submitted, or it is too long.
            AuthenticationError: If the PIN does not match.
        """
        if pin is None or pin == "":
            raise ValidationError("PIN required")
        if not isinstance(pin, str):
            raise ValidationError("PIN must be a string")
        if len(pin.encode("utf-8")) > MAX_PIN_BYTES:
            raise ValidationError("PIN is too long")
        pin_hash = await _fetchval(self._db, _SELECT_PIN_HASH, user_id)
        if not pin_hash:
            logger.warning("PIN check for user without PIN hash: user=%s", user_id)
            raise AuthenticationError("Invalid PIN")
        loop = asyncio.get_running_loop()
        # bcrypt blocks; run it in the default executor.
        valid = await loop.run_in_executor(None, self._hasher.matches, pin, pin_hash)
        if not valid:
            logger.info("Invalid PIN submitted: user=%s", user_id)
            raise AuthenticationError("Invalid PIN")


# ---------------------------------------------------------------------------
# Gate
# ---------------------------------------------------------------------------

class AccessGate:
    """Apply the session check, then the PIN policy, for one operation."""

    def __init__(self, sessions: SessionVerifier, pins: PinVerifier):
        self._sessions = sessions
        self._pins = pins

    async def authenticate(self, token: Optional[str]) -> Identity:
        """Verify the session only, whatever the operation."""
        return await self._sessions.verify(token)

    @staticmethod
    def requires_pin(operation: str) -> bool:
        if operation not in OPERATIONS:
            raise ValueError(f"Unknown vault operation: {operation}")
        return operation in PIN_GATED_OPERATIONS

    async def authorize(
        self, operation: str, token: Optional[str], pin: Optional[str] = None
    ) -> Identity:
        """Authorize ``operation`` for the bearer of ``token``.

        The session is always verified first; the PIN is only looked at
        once the session is valid, and only for PIN-gated operations.

        Returns:
            The authenticated identity.
        """
        needs_pin = self.requires_pin(operation)
        identity = await self._sessions.verify(token)
        if needs_pin:
            await self._pins.verify(identity.user_id, pin)
        logger.debug(
            "Authorized %s for user=%s (pin checked: %s)",
            operation, identity.user_id, needs_pin,
        )
        return identity
