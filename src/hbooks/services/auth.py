"""Identity provider contract and the session observer every store follows.

`AuthSessionObserver` turns provider state notifications into a user id (or
the anonymous sentinel) and fans them out synchronously to listeners. It
does not debounce: a listener that receives its current identity again must
treat the call as a no-op.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, replace
from typing import Protocol
from uuid import uuid4

from hbooks.errors import AuthError, ValidationError

logger = logging.getLogger(__name__)

ANONYMOUS_USER_ID = "anonymous"
MIN_PASSWORD_LENGTH = 6
_EMAIL_RE = re.compile(r"^[A-Za-z0-9._%+\-]+@[A-Za-z0-9.\-]+\.[A-Za-z]{2,}$")

IdentityListener = Callable[[str], None]


def is_authenticated(user_id: str) -> bool:
    return bool(user_id) and user_id != ANONYMOUS_USER_ID


def is_valid_email(email: str) -> bool:
    return bool(email.strip()) and _EMAIL_RE.match(email.strip()) is not None


@dataclass(frozen=True)
class UserAccount:
    """Public profile of the signed-in user."""

    uid: str
    email: str
    display_name: str = ""


class IdentityProvider(Protocol):
    """Remote identity service; every action either completes or raises."""

    @property
    def current_user(self) -> UserAccount | None: ...

    def add_state_listener(self, callback: Callable[[], None]) -> None: ...

    async def sign_in(self, email: str, password: str) -> None: ...

    async def create_account(self, email: str, password: str) -> None: ...

    async def send_password_reset(self, email: str) -> None: ...

    async def update_display_name(self, name: str) -> None: ...

    async def update_password(self, new_password: str) -> None: ...

    def sign_out(self) -> None: ...


@dataclass
class _StoredAccount:
    account: UserAccount
    password: str


class InMemoryIdentityProvider:
    """Process-local accounts keyed by email."""

    def __init__(self) -> None:
        self._accounts: dict[str, _StoredAccount] = {}
        self._current: UserAccount | None = None
        self._listeners: list[Callable[[], None]] = []
        self.password_resets: list[str] = []

    @property
    def current_user(self) -> UserAccount | None:
        return self._current

    def add_state_listener(self, callback: Callable[[], None]) -> None:
        self._listeners.append(callback)

    async def sign_in(self, email: str, password: str) -> None:
        stored = self._accounts.get(_normalize_email(email))
        if stored is None or stored.password != password:
            raise AuthError("The email or password is incorrect.")
        self._set_current(stored.account)

    async def create_account(self, email: str, password: str) -> None:
        account = self.add_account(email, password)
        self._set_current(account)

    def add_account(
        self, email: str, password: str, *, uid: str | None = None
    ) -> UserAccount:
        """Register an account without signing in; `uid` defaults to a random id."""
        key = _normalize_email(email)
        if key in self._accounts:
            raise AuthError("An account already exists for this email address.")
        account = UserAccount(uid=uid or uuid4().hex, email=key)
        self._accounts[key] = _StoredAccount(account=account, password=password)
        return account

    async def send_password_reset(self, email: str) -> None:
        key = _normalize_email(email)
        if key not in self._accounts:
            raise AuthError("There is no account for this email address.")
        self.password_resets.append(key)

    async def update_display_name(self, name: str) -> None:
        stored = self._require_current()
        stored.account = replace(stored.account, display_name=name)
        self._current = stored.account

    async def update_password(self, new_password: str) -> None:
        stored = self._require_current()
        stored.password = new_password

    def sign_out(self) -> None:
        self._set_current(None)

    def _require_current(self) -> _StoredAccount:
        if self._current is None:
            raise AuthError("No authenticated user.")
        return self._accounts[self._current.email]

    def _set_current(self, account: UserAccount | None) -> None:
        self._current = account
        for callback in list(self._listeners):
            callback()


def _normalize_email(email: str) -> str:
    return email.strip().lower()


class AuthSessionObserver:
    """Exposes the active identity and identity-change notifications."""

    def __init__(self, provider: IdentityProvider) -> None:
        self._provider = provider
        self._listeners: list[IdentityListener] = []
        provider.add_state_listener(self._on_provider_state_changed)

    @property
    def current_user(self) -> UserAccount | None:
        return self._provider.current_user

    def current_identity(self) -> str:
        user = self._provider.current_user
        return user.uid if user is not None else ANONYMOUS_USER_ID

    def add_listener(self, callback: IdentityListener) -> Callable[[], None]:
        """Register an identity listener and return its removal function."""
        self._listeners.append(callback)

        def remove() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return remove

    def _on_provider_state_changed(self) -> None:
        identity = self.current_identity()
        logger.debug("Identity notification: %s", identity)
        for callback in list(self._listeners):
            callback(identity)

    async def sign_in(self, email: str, password: str) -> None:
        email = email.strip()
        if not is_valid_email(email) or not password.strip():
            raise ValidationError("Please enter a valid email and password.")
        await self._call("sign in", self._provider.sign_in(email, password))

    async def register(
        self, display_name: str, email: str, password: str, confirm_password: str
    ) -> None:
        """Create an account, then apply the display name when one was given."""
        email = email.strip()
        if not display_name.strip():
            raise ValidationError("Please enter your name.")
        if not is_valid_email(email):
            raise ValidationError("Please enter a valid email address.")
        _require_password_length(password)
        if password != confirm_password:
            raise ValidationError("Passwords do not match.")
        await self._call("register", self._provider.create_account(email, password))
        await self._call(
            "update display name",
            self._provider.update_display_name(display_name.strip()),
        )

    async def send_password_reset(self, email: str) -> None:
        email = email.strip()
        if not is_valid_email(email):
            raise ValidationError("Enter a valid email to reset your password.")
        await self._call("send password reset", self._provider.send_password_reset(email))

    async def update_display_name(self, name: str) -> None:
        if not name.strip():
            raise ValidationError("Name cannot be empty.")
        await self._call(
            "update display name", self._provider.update_display_name(name.strip())
        )

    async def update_password(self, new_password: str) -> None:
        _require_password_length(new_password)
        await self._call("update password", self._provider.update_password(new_password))

    def sign_out(self) -> None:
        self._provider.sign_out()

    async def _call(self, action: str, operation: Awaitable[None]) -> None:
        try:
            await operation
        except AuthError:
            logger.info("Auth action failed: %s", action)
            raise
        except Exception as exc:
            logger.warning("Auth action %s failed: %s", action, exc)
            raise AuthError(str(exc) or f"Unable to {action}.") from exc


def _require_password_length(password: str) -> None:
    if len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(
            f"Password must be at least {MIN_PASSWORD_LENGTH} characters."
        )
