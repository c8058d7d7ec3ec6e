"""Base class and factory for token authentication providers."""

from __future__ import annotations

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Optional

if TYPE_CHECKING:
    import requests

    from .credentials import CredentialStore, SecretTextCredential


@dataclass(frozen=True)
class Token:
    """A session token and the cookie it was read from."""

    value: str = field(repr=False)
    cookie_name: str


class TokenAuthProvider(ABC):
    """Abstract base class for token acquisition strategies."""

    @abstractmethod
    def get_token(self) -> Optional[Token]:
        """
        Acquire a fresh token from the identity service.

        Returns:
            The token, or None when the service did not hand one out
        """

    @abstractmethod
    def update_credential(self, credential: "SecretTextCredential") -> bool:
        """
        Acquire a fresh token and write it back into `credential` in the store.

        Args:
            credential: The credential whose token should be refreshed

        Returns:
            True if the stored value changed
        """


def create_auth_provider(
    name: str,
    credential: "SecretTextCredential",
    store: Optional["CredentialStore"] = None,
    *,
    session: Optional["requests.Session"] = None,
    timeout: Optional[float] = None,
) -> TokenAuthProvider:
    """
    Factory function to create the token provider named `name`.

    Args:
        name: Provider name from configuration
        credential: Credential holding the provider's login material
        store: Credential store refreshed tokens are written to
        session: Optional HTTP session to reuse
        timeout: Request timeout in seconds

    Raises:
        ValueError: If provider is not supported
    """
    provider = (name or "").lower()

    if provider in ("dcos", "dc/os"):
        from .dcos import DcosAuthProvider

        kwargs = {"session": session}
        if timeout is not None:
            kwargs["timeout"] = timeout
        return DcosAuthProvider(credential, store, **kwargs)

    raise ValueError(f"Unsupported auth provider: {name}. Supported providers: dcos")
