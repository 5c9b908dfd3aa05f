"""Actor authentication and the permission collaborator used before close/associate."""

import logging
from datetime import datetime, timedelta, timezone
from typing import Iterable, Optional

import jwt
from fastapi import Depends, HTTPException, Request, status

from milestone_tracker.constants.constants import PermissionAction
from .config import settings

logger = logging.getLogger(__name__)


def create_jwt_token(data: dict, expires_delta: timedelta = timedelta(hours=1)) -> str:
    """
    Creates a JWT with the provided data and expiration time.

    Args:
        data (dict): The payload data to be encoded in the JWT; ``sub`` names the actor.
        expires_delta (timedelta, optional): The time until the token expires.
            Defaults to 1 hour.

    Returns:
        str: The encoded JWT string.
    """
    now = datetime.now(timezone.utc)
    to_encode = data.copy()
    to_encode.update({
        "exp": now + expires_delta,
        "iat": now,
    })
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def decode_jwt_token(token: str) -> dict:
    """Decodes and validates a JWT token.

    Raises:
        jwt.InvalidTokenError: If the token is invalid, expired, or improperly formatted.
    """
    try:
        return jwt.decode(
            token,
            settings.SECRET_KEY,
            algorithms=[settings.ALGORITHM]
        )
    except jwt.InvalidTokenError as e:
        logger.info(f"JWT decode error: {str(e)}")
        raise


def _token_from_request(request: Request) -> Optional[str]:
    token = request.cookies.get("auth_token")
    if token:
        return token
    authorization = request.headers.get("Authorization", "")
    scheme, _, credentials = authorization.partition(" ")
    if scheme.lower() == "bearer" and credentials:
        return credentials
    return None


async def get_current_actor(request: Request) -> str:
    """
    Dependency to get the acting user id from the JWT cookie or bearer header
    Raises 401 if not authenticated
    """
    token = _token_from_request(request)
    if not token:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated"
        )

    try:
        payload = decode_jwt_token(token)
    except jwt.InvalidTokenError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token"
        )

    actor = payload.get("sub")
    if not actor:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload"
        )
    return str(actor)


class PermissionChecker:
    """
    Yes/no capability check consumed before close and associate.

    Authorization decisions belong to the surrounding application; this default
    admits every authenticated actor except the configured read-only ones.
    Deployments replace it by overriding ``get_permission_checker``.
    """

    def __init__(self, read_only_actors: Optional[Iterable[str]] = None):
        self.read_only_actors = set(
            read_only_actors if read_only_actors is not None else settings.READ_ONLY_ACTORS
        )

    async def is_authorized(self, actor: str, milestone_id: str, action: PermissionAction) -> bool:
        return actor not in self.read_only_actors


def get_permission_checker() -> PermissionChecker:
    return PermissionChecker()


def require_permission(action: PermissionAction):
    """Build a dependency that resolves the actor and checks ``action`` on the target milestone."""

    async def dependency(
        milestone_id: str,
        actor: str = Depends(get_current_actor),
        checker: PermissionChecker = Depends(get_permission_checker),
    ) -> str:
        if not await checker.is_authorized(actor, milestone_id, action):
            logger.info(f"Actor {actor} denied {action.value} on milestone {milestone_id}")
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Not allowed to {action.value} milestone {milestone_id}"
            )
        return actor

    return dependency
