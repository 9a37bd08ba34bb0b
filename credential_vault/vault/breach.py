"""
Breach check: k-anonymity lookup against a Pwned Passwords range API.

Only the first five hex characters of the password's SHA-1 digest leave the
process; the API answers with every known suffix for that prefix and the
match is done locally.
"""
import asyncio
import hashlib
import logging
from typing import Any, Optional

import aiohttp

from ..exceptions import ServiceUnavailableError, ValidationError
from .config import DEFAULT_BREACH_API_URL

logger = logging.getLogger("credential_vault.vault")

PREFIX_LENGTH = 5


def split_digest(password: str) -> tuple[str, str]:
    """Return the (prefix, suffix) of the uppercase SHA-1 hex digest."""
    digest = hashlib.sha1(password.encode("utf-8")).hexdigest().upper()
    return digest[:PREFIX_LENGTH], digest[PREFIX_LENGTH:]


def count_occurrences(body: str, suffix: str) -> int:
    """Find ``suffix`` in a range response body of ``SUFFIX:COUNT`` lines."""
    for line in body.splitlines():
        candidate, _, count = line.strip().partition(":")
        if candidate.upper() == suffix:
            try:
                return int(count)
            except ValueError:
                return 0
    return 0


class BreachChecker:
    """Check passwords against a range API over a shared aiohttp session."""

    def __init__(
        self,
        session: Optional[aiohttp.ClientSession] = None,
        api_url: str = DEFAULT_BREACH_API_URL,
        timeout: float = 5.0,
    ):
        self._session = session
        self._owns_session = session is None
        self._api_url = api_url if api_url.endswith("/") else f"{api_url}/"
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self._session

    async def close(self) -> None:
        if self._owns_session and self._session is not None:
            await self._session.close()
            self._session = None

    async def check(self, password: Any) -> dict:
        """Look a password up in the breach corpus.

        Returns:
            ``{"compromised": bool, "occurrences": int}``

        Raises:
            ValidationError: If ``password`` is empty or not a string.
            ServiceUnavailableError: If the range API cannot be reached or
                answers with a non-200 status.
        """
        if not isinstance(password, str) or not password:
            raise ValidationError("Password is required")
        prefix, suffix = split_digest(password)
        session = await self._get_session()
        try:
            async with session.get(
                f"{self._api_url}{prefix}",
                headers={"Add-Padding": "true"},
                timeout=self._timeout,
            ) as response:
                if response.status != 200:
                    logger.warning(
                        "Breach range API answered %s for a lookup", response.status,
                    )
                    raise ServiceUnavailableError("Breach check service unavailable")
                body = await response.text()
        except (aiohttp.ClientError, asyncio.TimeoutError) as err:
            logger.warning("Breach range API unreachable: %s", err)
            raise ServiceUnavailableError("Breach check service unavailable") from err
        occurrences = count_occurrences(body, suffix)
        return {"compromised": occurrences > 0, "occurrences": occurrences}
