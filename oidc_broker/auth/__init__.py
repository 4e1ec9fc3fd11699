"""
Authentication Package

Poll-based OIDC login for clients that cannot receive an HTTP redirect.

Modules:
- broker: begin / callback / poll orchestration
- session_store: in-flight and completed login sessions
- users: bearer-token issuance
- routes: HTTP endpoints (/api/login-options, /api/oidc/*)

The flow:
1. Client calls /api/oidc/auth and opens the returned URL in a browser
2. User authenticates with the identity provider
3. Provider redirects the browser to /api/oidc/callback
4. Broker exchanges the code and issues a bearer token
5. Client polls /api/oidc/auth-query until the token is returned
"""

from .broker import AuthBroker, BeginResult, PollResult
from .routes import auth_router
from .session_store import AuthSession, SessionStore
from .users import UserDirectory

__all__ = [
    "auth_router",
    "AuthBroker",
    "AuthSession",
    "BeginResult",
    "PollResult",
    "SessionStore",
    "UserDirectory",
]
