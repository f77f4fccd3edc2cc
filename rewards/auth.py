"""
Session/Auth bridge.

``InMemoryIdentityProvider`` stands in for the hosted auth backend: it owns
identities and passwords and fires state-change notifications.
``SessionManager`` holds the per-process session state (current identity and
loaded profile) and rebroadcasts it to its own subscribers.
"""

import threading
from enum import Enum
from typing import Callable, Optional
from uuid import UUID, uuid4

import argon2
import structlog
from pydantic import BaseModel

from .errors import IdentityCreationFailed, InvalidCredentials, RecordNotFound, RewardsError
from .models import Identity, User

logger = structlog.get_logger()

_hasher = argon2.PasswordHasher(
    time_cost=2,
    memory_cost=65536,
    parallelism=1,
    hash_len=32,
    salt_len=16,
    type=argon2.Type.ID,
)

MIN_PASSWORD_LENGTH = 6


class AuthEvent(str, Enum):
    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    UPDATED = "UPDATED"


StateListener = Callable[[AuthEvent, Optional[Identity]], None]


def hash_password(password: str) -> str:
    return _hasher.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return _hasher.verify(password_hash, password)
    except argon2.exceptions.VerifyMismatchError:
        return False


class InMemoryIdentityProvider:
    def __init__(self):
        self.identities: dict[UUID, Identity] = {}
        self.password_hashes: dict[UUID, str] = {}
        self.current: Optional[Identity] = None
        self._listeners: list[StateListener] = []
        self._lock = threading.RLock()

    def create_identity(self, email: str, password: str, attrs: Optional[dict] = None) -> Identity:
        email = email.strip().lower()
        if "@" not in email:
            raise IdentityCreationFailed(f"Invalid email address: {email}")
        if len(password) < MIN_PASSWORD_LENGTH:
            raise IdentityCreationFailed(f"Password must be at least {MIN_PASSWORD_LENGTH} characters")
        with self._lock:
            if any(i.email == email for i in self.identities.values()):
                raise IdentityCreationFailed(f"User already registered: {email}")
            identity = Identity(id=uuid4(), email=email, attrs=dict(attrs or {}))
            self.identities[identity.id] = identity
            self.password_hashes[identity.id] = hash_password(password)
        return identity

    def delete_identity(self, identity_id: UUID) -> None:
        with self._lock:
            if identity_id not in self.identities:
                raise RecordNotFound("identity", identity_id)
            del self.identities[identity_id]
            del self.password_hashes[identity_id]
            signed_out = self.current is not None and self.current.id == identity_id
            if signed_out:
                self.current = None
        if signed_out:
            self._notify(AuthEvent.SIGNED_OUT, None)

    def update_identity(self, identity_id: UUID, attrs: dict) -> Identity:
        with self._lock:
            identity = self.identities.get(identity_id)
            if identity is None:
                raise RecordNotFound("identity", identity_id)
            identity = identity.model_copy(update={"attrs": {**identity.attrs, **attrs}})
            self.identities[identity_id] = identity
            is_current = self.current is not None and self.current.id == identity_id
            if is_current:
                self.current = identity
        if is_current:
            self._notify(AuthEvent.UPDATED, identity)
        return identity

    def sign_in(self, email: str, password: str) -> Identity:
        email = email.strip().lower()
        identity = next((i for i in self.identities.values() if i.email == email), None)
        if identity is None or not verify_password(password, self.password_hashes[identity.id]):
            raise InvalidCredentials("Invalid login credentials")
        self.current = identity
        self._notify(AuthEvent.SIGNED_IN, identity)
        return identity

    def sign_out(self) -> None:
        self.current = None
        self._notify(AuthEvent.SIGNED_OUT, None)

    def get_current_identity(self) -> Optional[Identity]:
        return self.current

    def on_state_change(self, listener: StateListener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self, event: AuthEvent, identity: Optional[Identity]) -> None:
        for listener in list(self._listeners):
            listener(event, identity)


class SessionState(BaseModel):
    authenticated: bool
    identity: Optional[Identity] = None
    profile: Optional[User] = None


class SessionManager:
    def __init__(self, provider: InMemoryIdentityProvider, load_profile: Callable[[UUID], User]):
        self.provider = provider
        self._load_profile = load_profile
        self.current_identity: Optional[Identity] = None
        self.profile: Optional[User] = None
        self._subscribers: list[Callable[[SessionState], None]] = []
        self._unsubscribe: Optional[Callable[[], None]] = None

    def initialize(self) -> None:
        identity = self.provider.get_current_identity()
        if identity is not None:
            self.current_identity = identity
            self.load_user_profile()
            self._broadcast(True)
        self._unsubscribe = self.provider.on_state_change(self.on_identity_changed)

    def teardown(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None
        self.current_identity = None
        self.profile = None
        self._subscribers.clear()

    def on_identity_changed(self, event: AuthEvent, identity: Optional[Identity]) -> None:
        if event in (AuthEvent.SIGNED_IN, AuthEvent.UPDATED) and identity is not None:
            self.current_identity = identity
            self.load_user_profile()
            self._broadcast(True)
        elif event == AuthEvent.SIGNED_OUT:
            self.current_identity = None
            self.profile = None
            self._broadcast(False)

    def load_user_profile(self) -> Optional[User]:
        if self.current_identity is None:
            return None
        try:
            self.profile = self._load_profile(self.current_identity.id)
        except RewardsError as e:
            logger.error("profile_load_failed", user_id=str(self.current_identity.id), error=str(e))
            self.profile = None
        return self.profile

    def subscribe(self, listener: Callable[[SessionState], None]) -> Callable[[], None]:
        self._subscribers.append(listener)

        def unsubscribe() -> None:
            if listener in self._subscribers:
                self._subscribers.remove(listener)

        return unsubscribe

    def sign_in(self, email: str, password: str) -> Identity:
        return self.provider.sign_in(email, password)

    def sign_out(self) -> None:
        self.provider.sign_out()

    def is_admin(self) -> bool:
        return self.profile is not None and self.profile.is_admin()

    @property
    def state(self) -> SessionState:
        return SessionState(
            authenticated=self.current_identity is not None,
            identity=self.current_identity,
            profile=self.profile,
        )

    def _broadcast(self, authenticated: bool) -> None:
        state = SessionState(authenticated=authenticated, identity=self.current_identity, profile=self.profile)
        for listener in list(self._subscribers):
            listener(state)
