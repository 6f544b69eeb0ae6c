"""Challenge/response session login for vendor HTTP APIs (FRITZ!Box ``login_sid.lua``)."""

from __future__ import annotations

import hashlib
import logging
import re
import time
from collections.abc import Callable

import httpx

from hubadapter.core.errors import AuthenticationError, ReauthLimitError

LOGGER = logging.getLogger(__name__)

INVALID_SID = "0000000000000000"
_SID_RE = re.compile(r"<SID>(.*?)</SID>")
_CHALLENGE_RE = re.compile(r"<Challenge>(.*?)</Challenge>")


def challenge_response(challenge: str, password: str) -> str:
    """``<challenge>-md5(utf16le("<challenge>-<password>"))``."""
    digest = hashlib.md5(f"{challenge}-{password}".encode("utf-16-le")).hexdigest()
    return f"{challenge}-{digest}"


class ReauthGuard:
    """Rate limit for logins: one attempt per cooldown, bounded attempt count.

    The attempt counter is reset by a successful login, so the ceiling only
    ends the adapter when the device keeps rejecting us.
    """

    def __init__(
        self,
        *,
        cooldown_s: float = 30.0,
        max_attempts: int = 20,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.cooldown_s = cooldown_s
        self.max_attempts = max_attempts
        self._clock = clock
        self._last: float | None = None
        self.attempts = 0

    def attempt(self) -> bool:
        now = self._clock()
        if self._last is not None and now - self._last < self.cooldown_s:
            LOGGER.info("Login attempt skipped; last attempt was %.1fs ago", now - self._last)
            return False
        if self.attempts >= self.max_attempts:
            raise ReauthLimitError(f"Exceeded maximum of {self.max_attempts} login attempts")
        self._last = now
        self.attempts += 1
        return True

    def reset(self) -> None:
        self.attempts = 0


class SessionAuthenticator:
    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        username: str,
        password: str,
        guard: ReauthGuard | None = None,
        login_path: str = "/login_sid.lua",
    ) -> None:
        if not password:
            raise AuthenticationError("Session login needs a password in the device conf")
        self._client = client
        self.username = username
        self._password = password
        self.guard = guard or ReauthGuard()
        self.login_path = login_path
        self.sid: str | None = None

    def params(self) -> dict[str, str]:
        return {"sid": self.sid} if self.sid else {}

    async def login(self) -> bool:
        """Fetch a fresh session id; ``False`` when skipped or rejected."""
        if not self.guard.attempt():
            return False
        try:
            response = await self._client.get(self.login_path)
            text = response.text
            match = _SID_RE.search(text)
            sid = match.group(1) if match else ""
            if sid and sid != INVALID_SID:
                self._accept(sid)
                return True

            challenge = _CHALLENGE_RE.search(text)
            if challenge is None:
                LOGGER.warning("No login challenge received from %s", self.login_path)
                return False

            response = await self._client.get(
                self.login_path,
                params={
                    "username": self.username,
                    "response": challenge_response(challenge.group(1), self._password),
                },
            )
        except httpx.HTTPError as exc:
            LOGGER.warning("Login request failed: %s", exc)
            return False

        match = _SID_RE.search(response.text)
        sid = match.group(1) if match else ""
        if not sid or sid == INVALID_SID:
            LOGGER.error("Login rejected for user %r", self.username)
            return False
        self._accept(sid)
        return True

    def _accept(self, sid: str) -> None:
        self.sid = sid
        self.guard.reset()
        LOGGER.info("Session established")
