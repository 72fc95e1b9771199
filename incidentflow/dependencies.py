"""FastAPI dependency injection providers."""

from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .auth.principal import Requester
from .config import IncidentFlowConfig, get_config
from .database import get_session, get_session_factory
from .engine.incident_service import IncidentLifecycleService
from .engine.query_engine import IncidentQueryEngine
from .utils.logging import get_logger
from .utils.security import decode_access_token

_dep_logger = get_logger("dependencies")

security_scheme = HTTPBearer(auto_error=False)

_config_instance: IncidentFlowConfig | None = None
_incident_service: IncidentLifecycleService | None = None
_query_engine: IncidentQueryEngine | None = None


def get_app_config() -> IncidentFlowConfig:
    """Get the application config singleton."""
    global _config_instance
    if _config_instance is None:
        _config_instance = get_config()
    return _config_instance


async def get_db(config: IncidentFlowConfig = Depends(get_app_config)):
    """Get an async database session."""
    async for session in get_session(config):
        yield session


def _extract_token(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials],
    config: IncidentFlowConfig,
) -> Optional[str]:
    # httpOnly cookie first, then Bearer header
    raw_token = request.cookies.get(config.session_cookie_name)
    if not raw_token and credentials:
        raw_token = credentials.credentials
    return raw_token or None


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security_scheme),
    config: IncidentFlowConfig = Depends(get_app_config),
) -> Requester:
    """Validate the JWT and return the requester it describes."""
    raw_token = _extract_token(request, credentials, config)
    if not raw_token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = decode_access_token(raw_token, config.secret_key, config.jwt_algorithm)
    if payload is None:
        _dep_logger.debug("token_rejected", path=str(request.url.path))
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return Requester.from_claims(payload)


async def get_optional_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security_scheme),
    config: IncidentFlowConfig = Depends(get_app_config),
) -> Optional[Requester]:
    """Like ``get_current_user`` but anonymous callers get ``None``."""
    raw_token = _extract_token(request, credentials, config)
    if not raw_token:
        return None
    payload = decode_access_token(raw_token, config.secret_key, config.jwt_algorithm)
    if payload is None:
        return None
    return Requester.from_claims(payload)


def get_incident_service() -> IncidentLifecycleService:
    """Get the incident lifecycle service singleton."""
    global _incident_service
    if _incident_service is None:
        factory = get_session_factory(get_app_config())
        _incident_service = IncidentLifecycleService(session_factory=factory)
    return _incident_service


def get_query_engine() -> IncidentQueryEngine:
    """Get the incident query engine singleton."""
    global _query_engine
    if _query_engine is None:
        factory = get_session_factory(get_app_config())
        _query_engine = IncidentQueryEngine(session_factory=factory)
    return _query_engine
