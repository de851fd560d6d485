"""
Request routing for the multiplexing variant.

Maps an inbound path (and the affinity cookie) to a live session and the
path to forward to its dev server. Primary key is the first path segment
under the route prefix; the cookie is the fallback whenever the path
carries no usable session id, and the only key for root-level paths on
the proxy allow-list.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Tuple

from rundev.exceptions import RouteNotFound
from rundev.models import Session, SessionState
from rundev.registry import SessionRegistry

NO_ACTIVE_SESSION = "No active session"
SESSION_EXPIRED = "Session expired"
SESSION_NOT_READY = "Session is not ready"


@dataclass(frozen=True)
class Route:
    session: Session
    # Path forwarded upstream, always with a leading slash
    path: str
    # True when the session id came from the path, i.e. the affinity
    # cookie should be (re)issued on the response
    by_path: bool


def split_session_path(rest: str) -> Tuple[str, str]:
    """``"abc/x/y"`` -> ``("abc", "/x/y")``; ``"abc"`` -> ``("abc", "/")``."""
    head, sep, tail = rest.lstrip("/").partition("/")
    return head, "/" + tail if sep else "/"


def _routable(session: Session) -> Session:
    if session.state is not SessionState.RUNNING:
        raise RouteNotFound(SESSION_NOT_READY)
    return session


def resolve_cookie(
    registry: SessionRegistry, cookie: Optional[str], path: str
) -> Route:
    """
    Route by affinity cookie alone.

    Raises:
        RouteNotFound: ``No active session`` without a cookie, ``Session
            expired`` when the cookie names a session that is gone.
    """
    if not cookie:
        raise RouteNotFound(NO_ACTIVE_SESSION)
    session = registry.lookup(cookie)
    if session is None:
        raise RouteNotFound(SESSION_EXPIRED)
    return Route(session=_routable(session), path=path, by_path=False)


def resolve_prefixed(
    registry: SessionRegistry, rest: str, cookie: Optional[str]
) -> Route:
    """
    Route a request below the route prefix.

    ``rest`` is everything after ``<prefix>/``. If its first segment is a
    known session id it is stripped; otherwise the whole of ``rest`` is
    forwarded to the cookie's session.
    """
    candidate, remainder = split_session_path(rest)
    if candidate:
        session = registry.lookup(candidate)
        if session is not None:
            return Route(session=_routable(session), path=remainder, by_path=True)
    return resolve_cookie(registry, cookie, "/" + rest.lstrip("/"))
