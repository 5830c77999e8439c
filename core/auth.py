# core/auth.py
"""
Auth collaborator: a thin async facade over Supabase Auth.

The anon client carries the signed-in user's session; account deletion needs
the admin API and therefore a service role client.
"""
import asyncio
import re
from typing import Any, Callable, Optional

from supabase import AuthError as SupabaseAuthError

from core.config import settings, logger as core_logger
from core.errors import AuthError, NotSignedIn
from core.models import User

logger = core_logger.getChild("Auth")

SUPPORTED_OAUTH_PROVIDERS = {"google", "github", "discord"}


def password_strength(password: str) -> str:
    """Rough strength hint shown while signing up."""
    if len(password) < 6:
        return "Weak"
    if re.search(r"[A-Z]", password) and re.search(r"[0-9]", password) and len(password) >= 8:
        return "Strong"
    return "Medium"


class AuthClient:
    def __init__(self, client: Any, admin_client_factory: Optional[Callable[[], Any]] = None):
        self._client = client
        # Awaitable factory returning a service role client; resolved lazily
        self._admin_client_factory = admin_client_factory

    async def _call(self, description: str, fn: Callable[[], Any]) -> Any:
        try:
            return await asyncio.to_thread(fn)
        except SupabaseAuthError as e:
            logger.warning(f"Auth call '{description}' failed: {e.message}")
            raise AuthError(e.message) from e

    async def sign_in_with_password(self, email: str, password: str) -> User:
        response = await self._call(
            "sign_in_with_password",
            lambda: self._client.auth.sign_in_with_password({"email": email, "password": password}),
        )
        if not response or not response.user:
            raise AuthError("Sign in failed.")
        logger.info(f"[{response.user.id}] Signed in with password.")
        return User.from_auth_user(response.user)

    async def sign_up(self, email: str, password: str, confirm_password: str) -> Optional[User]:
        """Creates an account. Returns None when the project requires email confirmation first."""
        if password != confirm_password:
            raise AuthError("Passwords do not match.")
        response = await self._call(
            "sign_up", lambda: self._client.auth.sign_up({"email": email, "password": password})
        )
        if not response or not response.user:
            return None
        logger.info(f"[{response.user.id}] Signed up (session issued: {response.session is not None}).")
        return User.from_auth_user(response.user) if response.session else None

    async def sign_in_with_oauth(self, provider: str, redirect_to: str = settings.OAUTH_REDIRECT_URL) -> str:
        """Returns the provider URL the user must open to complete federated sign-in."""
        if provider not in SUPPORTED_OAUTH_PROVIDERS:
            raise AuthError(f"Unsupported sign-in provider '{provider}'.")
        response = await self._call(
            "sign_in_with_oauth",
            lambda: self._client.auth.sign_in_with_oauth(
                {"provider": provider, "options": {"redirect_to": redirect_to}}
            ),
        )
        return response.url

    async def exchange_code_for_session(self, auth_code: str, code_verifier: Optional[str] = None) -> User:
        params = {"auth_code": auth_code, "redirect_to": settings.OAUTH_REDIRECT_URL}
        if code_verifier:
            params["code_verifier"] = code_verifier
        response = await self._call(
            "exchange_code_for_session", lambda: self._client.auth.exchange_code_for_session(params)
        )
        if not response or not response.user:
            raise AuthError("Sign in failed.")
        return User.from_auth_user(response.user)

    async def sign_out(self) -> None:
        await self._call("sign_out", lambda: self._client.auth.sign_out())
        logger.info("Signed out.")

    async def update_profile(self, display_name: Optional[str] = None, avatar_url: Optional[str] = None) -> User:
        data = {}
        if display_name is not None:
            data["display_name"] = display_name
        if avatar_url is not None:
            data["avatar_url"] = avatar_url
        response = await self._call("update_user", lambda: self._client.auth.update_user({"data": data}))
        if not response or not response.user:
            raise NotSignedIn("No signed-in user to update.")
        return User.from_auth_user(response.user)

    async def delete_user(self, user_id: str) -> None:
        if self._admin_client_factory is None:
            raise AuthError("Account deletion is not configured.")
        try:
            admin = await self._admin_client_factory()
        except ValueError as e:
            raise AuthError(str(e)) from e
        await self._call("admin.delete_user", lambda: admin.auth.admin.delete_user(user_id))
        logger.info(f"[{user_id}] Identity deleted.")
