"""Authentication helpers for Marathon Deployer."""

from .base import Token, TokenAuthProvider, create_auth_provider
from .credentials import (
    Credential,
    CredentialStore,
    InMemoryCredentialStore,
    JsonFileCredentialStore,
    SecretTextCredential,
    UsernamePasswordCredential,
    authorization_header,
)
from .dcos import DCOS_AUTH_COOKIE, DcosAuthProvider, DcosLoginPayload, LoginResponse

__all__ = [
    "Token",
    "TokenAuthProvider",
    "create_auth_provider",
    "Credential",
    "CredentialStore",
    "InMemoryCredentialStore",
    "JsonFileCredentialStore",
    "SecretTextCredential",
    "UsernamePasswordCredential",
    "authorization_header",
    "DCOS_AUTH_COOKIE",
    "DcosAuthProvider",
    "DcosLoginPayload",
    "LoginResponse",
]
