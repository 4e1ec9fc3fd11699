"""
OIDC Broker

Server-mediated OAuth2 / OpenID Connect login for clients that cannot
receive an HTTP redirect. See ``oidc_broker.auth`` for the flow.
"""

__version__ = "1.0.0"
