"""
Auth Service client

Sign up / sign in / sign out against Supabase Auth (GoTrue) over HTTP, plus
session-change notifications for anything that wants to follow them.
Identity only gates access; editor progress is keyed by the anonymous session id.
"""

import asyncio
from typing import Callable, List, Optional

import requests

import config
from logger import playground_logger
from models import AuthSession, UserIdentity

SIGNED_IN = "SIGNED_IN"
SIGNED_OUT = "SIGNED_OUT"

# (event, session) -> None; session is None on SIGNED_OUT
AuthListener = Callable[[str, Optional[AuthSession]], None]


class AuthServiceError(Exception):
    """Raised with the auth service's own message (e.g. 'Invalid login credentials')."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class AuthService:
    """Listener bookkeeping shared by every backend."""

    def __init__(self):
        self._listeners: List[AuthListener] = []

    def subscribe(self, listener: AuthListener) -> Callable[[], None]:
        """Register for session changes. Returns a function that unsubscribes."""
        self._listeners.append(listener)

        def unsubscribe():
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, event: str, session: Optional[AuthSession]):
        for listener in list(self._listeners):
            try:
                listener(event, session)
            except Exception as e:
                playground_logger.error(f"Auth listener failed on {event}: {e}", exc_info=True)

    async def sign_up(self, email: str, password: str, display_name: str = "") -> AuthSession:
        raise NotImplementedError

    async def sign_in(self, email: str, password: str) -> AuthSession:
        raise NotImplementedError

    async def sign_out(self, access_token: str) -> None:
        raise NotImplementedError

    async def get_user(self, access_token: str) -> Optional[UserIdentity]:
        raise NotImplementedError


def _identity(user: dict) -> UserIdentity:
    metadata = user.get("user_metadata") or {}
    return UserIdentity(
        id=user["id"],
        email=user.get("email") or "",
        display_name=metadata.get("full_name") or metadata.get("display_name"),
    )


def _error_message(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or f"HTTP {response.status_code}"
    return body.get("msg") or body.get("error_description") or body.get("message") or str(body)


class SupabaseAuthService(AuthService):

    def __init__(
        self,
        url: str = config.SUPABASE_URL,
        api_key: str = config.SUPABASE_ANON_KEY,
        timeout: float = config.DATA_SERVICE_TIMEOUT_SECONDS
    ):
        super().__init__()
        if not url or not api_key:
            raise AuthServiceError("SUPABASE_URL and SUPABASE_ANON_KEY must be set", 500)
        self.base_url = f"{url.rstrip('/')}/auth/v1"
        self.api_key = api_key
        self.timeout = timeout
        self.http = requests.Session()
        self.http.headers.update({"apikey": api_key, "Content-Type": "application/json"})

    def _request(self, method: str, path: str, token: Optional[str] = None, **kwargs) -> requests.Response:
        headers = {"Authorization": f"Bearer {token or self.api_key}"}
        try:
            response = self.http.request(
                method, f"{self.base_url}{path}", headers=headers, timeout=self.timeout, **kwargs
            )
        except requests.RequestException as e:
            playground_logger.error(f"❌ Auth service unreachable ({method} {path}): {e}")
            raise AuthServiceError(f"Auth service unreachable: {e}", 502) from e

        if response.status_code >= 400:
            raise AuthServiceError(_error_message(response), response.status_code)
        return response

    def _session_from(self, body: dict) -> AuthSession:
        user = body.get("user") or body
        if "id" not in user:
            raise AuthServiceError("Auth service returned no user", 502)
        return AuthSession(access_token=body.get("access_token", ""), user=_identity(user))

    async def sign_up(self, email, password, display_name=""):
        response = await asyncio.to_thread(
            self._request, "POST", "/signup",
            json={"email": email, "password": password, "data": {"full_name": display_name}}
        )
        session = self._session_from(response.json())
        playground_logger.info(f"👤 Signed up {email}")
        if session.access_token:
            self._notify(SIGNED_IN, session)
        return session

    async def sign_in(self, email, password):
        response = await asyncio.to_thread(
            self._request, "POST", "/token",
            params={"grant_type": "password"},
            json={"email": email, "password": password}
        )
        session = self._session_from(response.json())
        playground_logger.info(f"👤 Signed in {email}")
        self._notify(SIGNED_IN, session)
        return session

    async def sign_out(self, access_token):
        await asyncio.to_thread(self._request, "POST", "/logout", token=access_token)
        self._notify(SIGNED_OUT, None)

    async def get_user(self, access_token):
        try:
            response = await asyncio.to_thread(self._request, "GET", "/user", token=access_token)
        except AuthServiceError as e:
            if e.status_code in (401, 403):
                return None
            raise
        return _identity(response.json())


# Global auth service instance
_auth_service = None


def get_auth_service() -> AuthService:
    """Get or create the global auth service (in-memory when USE_MOCK_SERVICES=true)."""
    global _auth_service
    if _auth_service is None:
        if config.USE_MOCK_SERVICES:
            from auth_service_mock import InMemoryAuthService
            playground_logger.warning("⚠️  MOCK AUTH SERVICE ENABLED - accounts live in memory")
            _auth_service = InMemoryAuthService()
        else:
            _auth_service = SupabaseAuthService()
    return _auth_service
