"""
Authentication and authorization dependencies
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from ..accounts import AccountManager
from ..chat import ChatService
from ..config import BankingConfig, get_config
from ..errors import AuthorizationError
from ..events import EventDispatcher
from ..ledger import LedgerEngine
from ..notifications import NotificationPublisher
from ..realtime import RealtimeHub
from ..storage import StorageInterface, create_storage


ADMIN_ROLE = "admin"
USER_ROLE = "user"


class BankingSystem:
    """Banking core with all components wired together"""

    def __init__(self, storage: Optional[StorageInterface] = None,
                 config: Optional[BankingConfig] = None):
        self.config = config or get_config()

        # Initialize storage
        self.storage = storage or create_storage(
            self.config.storage_backend, self.config.database_path
        )

        # Initialize core components
        self.dispatcher = EventDispatcher()
        self.hub = RealtimeHub(
            admin_room=self.config.admin_room,
            typing_expiry_seconds=self.config.typing_expiry_seconds
        )
        self.accounts = AccountManager(self.storage)
        self.ledger = LedgerEngine(
            self.storage, self.accounts, self.dispatcher,
            member_subtype=self.config.member_subtype
        )
        self.chat = ChatService(self.storage, self.accounts, self.dispatcher)

        # Realtime fan-out of domain events
        self.notifications = NotificationPublisher(self.hub, self.accounts)
        self.notifications.register(self.dispatcher)

    def close(self) -> None:
        self.hub.close()
        self.dispatcher.clear()
        self.storage.close()


# Dependency to get banking system
def get_banking_system(request: Request) -> BankingSystem:
    return request.app.state.system


@dataclass
class CurrentUser:
    """Identity carried by a verified bearer token"""
    user_id: str
    role: str = USER_ROLE

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE


# JWT Security
security = HTTPBearer(auto_error=False)


def create_access_token(user_id: str, role: str = USER_ROLE,
                        config: Optional[BankingConfig] = None,
                        expires_minutes: int = 60) -> str:
    """Issue a signed token; used by tooling and tests"""
    config = config or get_config()
    payload = {
        "sub": user_id,
        "role": role,
        "exp": datetime.now(timezone.utc) + timedelta(minutes=expires_minutes),
    }
    return jwt.encode(payload, config.jwt_secret, algorithm=config.jwt_algorithm)


def authenticate_token(token: Optional[str], config: BankingConfig) -> CurrentUser:
    """Validate a bearer token and return its identity"""
    if not config.auth_enabled:
        return CurrentUser(user_id="test_user", role=ADMIN_ROLE)  # For tests when auth is disabled

    if not token:
        raise HTTPException(status_code=401, detail="Not authenticated")
    try:
        payload = jwt.decode(token, config.jwt_secret, algorithms=[config.jwt_algorithm])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail="Token expired")
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail="Invalid token")

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=401, detail="Invalid token")
    return CurrentUser(user_id=user_id, role=payload.get("role", USER_ROLE))


# Authentication Dependencies
def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    system: BankingSystem = Depends(get_banking_system)
) -> CurrentUser:
    """Dependency that validates JWT and returns current user"""
    token = credentials.credentials if credentials else None
    return authenticate_token(token, system.config)


def require_admin(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
    """Dependency that only lets administrators through"""
    if not user.is_admin:
        raise AuthorizationError("Admin access required")
    return user
