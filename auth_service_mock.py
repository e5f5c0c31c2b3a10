"""
In-memory Auth Service for local development and tests.
Passwords are kept as salted hashes; tokens are random and die with the process.
"""
import hashlib
import secrets
import uuid
from typing import Dict, Optional, Tuple

from auth_service import AuthService, AuthServiceError, SIGNED_IN, SIGNED_OUT
from logger import playground_logger
from models import AuthSession, UserIdentity


def _hash(password: str, salt: str) -> str:
    return hashlib.sha256(f"{salt}:{password}".encode("utf-8")).hexdigest()


class InMemoryAuthService(AuthService):

    def __init__(self):
        super().__init__()
        # email -> (salt, password hash, identity)
        self.accounts: Dict[str, Tuple[str, str, UserIdentity]] = {}
        self.tokens: Dict[str, UserIdentity] = {}

    def _open_session(self, user: UserIdentity) -> AuthSession:
        token = secrets.token_urlsafe(24)
        self.tokens[token] = user
        session = AuthSession(access_token=token, user=user)
        self._notify(SIGNED_IN, session)
        return session

    async def sign_up(self, email, password, display_name=""):
        email = email.lower()
        if email in self.accounts:
            raise AuthServiceError("User already registered", 422)
        salt = secrets.token_hex(8)
        user = UserIdentity(id=str(uuid.uuid4()), email=email, display_name=display_name or None)
        self.accounts[email] = (salt, _hash(password, salt), user)
        playground_logger.info(f"Using MOCK auth: signed up {email}")
        return self._open_session(user)

    async def sign_in(self, email, password):
        account = self.accounts.get(email.lower())
        if account is None or _hash(password, account[0]) != account[1]:
            raise AuthServiceError("Invalid login credentials", 400)
        return self._open_session(account[2])

    async def sign_out(self, access_token):
        if self.tokens.pop(access_token, None) is None:
            raise AuthServiceError("Invalid token", 401)
        self._notify(SIGNED_OUT, None)

    async def get_user(self, access_token) -> Optional[UserIdentity]:
        return self.tokens.get(access_token)
