"""Credential model and the store interface used to look them up."""

from __future__ import annotations

import base64
import json
import logging
import os
import tempfile
import threading
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Dict, Iterable, Optional, Union

logger = logging.getLogger(__name__)

# JSON field holding the session token inside a secret-text credential
TOKEN_FIELD = "token"


@dataclass(frozen=True)
class Credential:
    """Base for credentials identified by an opaque id."""

    id: str


@dataclass(frozen=True)
class SecretTextCredential(Credential):
    """A secret string; either a bare token or a JSON document."""

    secret: str = field(default="", repr=False)

    def json_payload(self) -> Optional[Dict[str, Any]]:
        try:
            payload = json.loads(self.secret)
        except ValueError:
            return None
        return payload if isinstance(payload, dict) else None

    def with_token(self, token: str) -> "SecretTextCredential":
        """Return a copy carrying `token`, keeping any other JSON fields."""
        payload = self.json_payload()
        if payload is None:
            return replace(self, secret=token)
        payload[TOKEN_FIELD] = token
        return replace(self, secret=json.dumps(payload))


@dataclass(frozen=True)
class UsernamePasswordCredential(Credential):
    username: str = ""
    password: str = field(default="", repr=False)


def token_from_credential(credential: SecretTextCredential) -> Optional[str]:
    """Extract the token: the ``token`` JSON field, or the whole secret."""
    payload = credential.json_payload()
    if payload is not None:
        token = payload.get(TOKEN_FIELD)
        return str(token) if token else None
    return credential.secret or None


def authorization_header(credential: Optional[Credential]) -> Optional[str]:
    """Build the ``Authorization`` header value for `credential`, if any."""
    if isinstance(credential, UsernamePasswordCredential):
        raw = f"{credential.username}:{credential.password}".encode("utf-8")
        return "Basic " + base64.b64encode(raw).decode("ascii")
    if isinstance(credential, SecretTextCredential):
        token = token_from_credential(credential)
        if token:
            return f"token={token}"
    return None


class CredentialStore(ABC):
    """Looks up and updates credentials by id.

    Implementations serialize concurrent access to the same id.
    """

    @abstractmethod
    def get(self, credential_id: str) -> Optional[Credential]:
        """Return the credential stored under `credential_id`, or None."""

    @abstractmethod
    def update(self, credential: Credential) -> bool:
        """Replace the stored credential with the same id.

        Returns False when no credential with that id exists.
        """


class InMemoryCredentialStore(CredentialStore):
    def __init__(self, credentials: Iterable[Credential] = ()) -> None:
        self._lock = threading.Lock()
        self._credentials: Dict[str, Credential] = {c.id: c for c in credentials}

    def get(self, credential_id: str) -> Optional[Credential]:
        with self._lock:
            return self._credentials.get(credential_id)

    def update(self, credential: Credential) -> bool:
        with self._lock:
            if credential.id not in self._credentials:
                logger.warning("Credential '%s' was not found in the credential store.", credential.id)
                return False
            self._credentials[credential.id] = credential
            return True


class JsonFileCredentialStore(CredentialStore):
    """Credentials kept in a JSON file.

    Layout::

        {
          "marathon-token": {"type": "secret", "secret": "..."},
          "marathon-user": {"type": "username_password", "username": "u", "password": "p"}
        }
    """

    def __init__(self, path: Union[str, Path]) -> None:
        self.path = Path(path)
        self._lock = threading.Lock()

    def get(self, credential_id: str) -> Optional[Credential]:
        with self._lock:
            entry = self._read().get(credential_id)
        if entry is None:
            return None
        return _credential_from_entry(credential_id, entry)

    def update(self, credential: Credential) -> bool:
        with self._lock:
            data = self._read()
            if credential.id not in data:
                logger.warning("Credential '%s' was not found in %s.", credential.id, self.path)
                return False
            data[credential.id] = _entry_from_credential(credential)
            self._write(data)
            return True

    def _read(self) -> Dict[str, Any]:
        if not self.path.is_file():
            return {}
        with self.path.open("r", encoding="utf-8") as handle:
            data = json.load(handle)
        return {k: v for k, v in data.items() if not k.startswith("_")}

    def _write(self, data: Dict[str, Any]) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp_name = tempfile.mkstemp(dir=str(self.path.parent), prefix=".credentials-")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as handle:
                json.dump(data, handle, indent=2)
            os.replace(tmp_name, self.path)
        except BaseException:
            Path(tmp_name).unlink(missing_ok=True)
            raise


def _credential_from_entry(credential_id: str, entry: Any) -> Credential:
    if isinstance(entry, str):
        return SecretTextCredential(id=credential_id, secret=entry)
    kind = entry.get("type", "secret")
    if kind == "username_password":
        return UsernamePasswordCredential(
            id=credential_id,
            username=entry.get("username", ""),
            password=entry.get("password", ""),
        )
    secret = entry.get("secret", "")
    if not isinstance(secret, str):
        # service account JSON may be stored inline as an object
        secret = json.dumps(secret)
    return SecretTextCredential(id=credential_id, secret=secret)


def _entry_from_credential(credential: Credential) -> Dict[str, Any]:
    if isinstance(credential, UsernamePasswordCredential):
        return {
            "type": "username_password",
            "username": credential.username,
            "password": credential.password,
        }
    if isinstance(credential, SecretTextCredential):
        return {"type": "secret", "secret": credential.secret}
    raise TypeError(f"Unsupported credential type: {type(credential).__name__}")
