"""Authentication for project owners via reverse proxy headers.

Owners sign in through Authelia, OAuth2 Proxy or a similar proxy that passes
the user identity in trusted headers. Experts never authenticate: they reach
a project through its invite link.
"""

import logging
import os
from dataclasses import dataclass, field
from functools import lru_cache
from ipaddress import ip_address, ip_network
from typing import List, Optional

from fastapi import HTTPException, Request, status

logger = logging.getLogger(__name__)

AUTH_ENABLED = os.getenv("KAPPA_AUTH_ENABLED", "false").lower() == "true"

# Only accept auth headers from these sources (IPs or CIDR ranges)
TRUSTED_PROXY_IPS = os.getenv(
    "KAPPA_TRUSTED_PROXY_IPS",
    "127.0.0.1,::1,10.0.0.0/8,172.16.0.0/12,192.168.0.0/16"
)

# Owner used for every request when auth is disabled
LOCAL_USERNAME = os.getenv("KAPPA_LOCAL_USERNAME", "local")

REMOTE_USER_HEADER = "Remote-User"
REMOTE_GROUPS_HEADER = "Remote-Groups"
REMOTE_EMAIL_HEADER = "Remote-Email"
REMOTE_NAME_HEADER = "Remote-Name"


@dataclass
class User:
    """Authenticated project owner."""

    username: str
    email: Optional[str] = None
    groups: List[str] = field(default_factory=list)
    display_name: Optional[str] = None


@lru_cache
def _parse_trusted_ips() -> tuple:
    """Parse trusted proxy IPs from the environment setting.

    Returns:
        Tuple of ip_address or ip_network objects
    """
    trusted = []
    for ip_str in TRUSTED_PROXY_IPS.split(","):
        ip_str = ip_str.strip()
        if not ip_str:
            continue
        try:
            if "/" in ip_str:
                trusted.append(ip_network(ip_str, strict=False))
            else:
                trusted.append(ip_address(ip_str))
        except ValueError:
            logger.warning("Invalid IP/CIDR in KAPPA_TRUSTED_PROXY_IPS: %s", ip_str)
    return tuple(trusted)


def _is_trusted_ip(client_ip: str) -> bool:
    """Check if a client IP is in the trusted proxy list."""
    try:
        client = ip_address(client_ip)
    except ValueError:
        logger.warning("Invalid client IP: %r", client_ip)
        return False

    for trusted in _parse_trusted_ips():
        if hasattr(trusted, "network_address"):
            if client in trusted:
                return True
        elif client == trusted:
            return True

    return False


def _get_client_ip(request: Request) -> str:
    """Extract the client IP, preferring the leftmost X-Forwarded-For entry."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()

    if request.client:
        return request.client.host

    return ""


async def get_current_user(request: Request) -> Optional[User]:
    """Extract the user from trusted proxy headers.

    Only returns a User if auth is enabled, the request comes from a trusted
    proxy IP and the Remote-User header is present.
    """
    if not AUTH_ENABLED:
        return None

    client_ip = _get_client_ip(request)

    if not _is_trusted_ip(client_ip):
        logger.warning(
            "Auth headers received from untrusted IP: %s (trusted: %s)",
            client_ip,
            TRUSTED_PROXY_IPS,
        )
        return None

    username = request.headers.get(REMOTE_USER_HEADER)
    if not username:
        return None

    groups_str = request.headers.get(REMOTE_GROUPS_HEADER, "")
    groups = [g.strip() for g in groups_str.split(",") if g.strip()]

    return User(
        username=username,
        email=request.headers.get(REMOTE_EMAIL_HEADER),
        groups=groups,
        display_name=request.headers.get(REMOTE_NAME_HEADER),
    )


async def get_optional_user(request: Request) -> Optional[User]:
    """Dependency for optional authentication; never raises."""
    return await get_current_user(request)


async def require_owner(request: Request) -> User:
    """Dependency for owner-only routes.

    With auth disabled every caller is the local owner.

    Raises:
        HTTPException: 401 if auth is enabled and the caller is anonymous
    """
    if not AUTH_ENABLED:
        return User(username=LOCAL_USERNAME)

    user = await get_current_user(request)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Authentication required",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return user
