"""HTTP client for the Marathon REST API."""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
from urllib.parse import quote

import requests

from ..definition import ApplicationDefinition
from ..errors import ApiError

logger = logging.getLogger(__name__)

REQUEST_TIMEOUT = 30.0
MAX_ERROR_BODY = 2000


@dataclass(frozen=True)
class DeploymentResult:
    """What Marathon returns for an accepted application update."""

    deployment_id: Optional[str]
    version: Optional[str] = None

    @classmethod
    def from_payload(cls, payload: Any) -> "DeploymentResult":
        if not isinstance(payload, dict):
            return cls(deployment_id=None)
        return cls(
            deployment_id=payload.get("deploymentId"),
            version=payload.get("version"),
        )


@dataclass(frozen=True)
class Deployment:
    """One entry of the active deployment list."""

    id: str
    affected_apps: List[str] = field(default_factory=list)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "Deployment":
        return cls(
            id=str(payload.get("id", "")),
            affected_apps=list(payload.get("affectedApps") or []),
        )


def _format_body(response: requests.Response) -> str:
    text = response.text or ""
    try:
        return json.dumps(json.loads(text), indent=2)
    except ValueError:
        if len(text) > MAX_ERROR_BODY:
            return text[:MAX_ERROR_BODY] + "..."
        return text


class MarathonClient:
    """Thin wrapper around the two Marathon endpoints the deployer needs.

    `authorization` is sent verbatim as the ``Authorization`` header; its
    scheme belongs to whoever produced it.
    """

    def __init__(
        self,
        base_url: str,
        *,
        authorization: Optional[str] = None,
        session: Optional[requests.Session] = None,
        timeout: float = REQUEST_TIMEOUT,
    ) -> None:
        if not base_url:
            raise ValueError("Marathon URL is required")
        self.base_url = base_url.rstrip("/")
        self.authorization = authorization
        self.session = session or requests.Session()
        self.timeout = timeout

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if self.authorization:
            headers["Authorization"] = self.authorization
        return headers

    def app_url(self, app_id: str) -> str:
        return f"{self.base_url}/v2/apps/{quote(app_id.lstrip('/'), safe='/')}"

    def _request(self, method: str, url: str, **kwargs: Any) -> requests.Response:
        try:
            response = self.session.request(
                method, url, headers=self._headers(), timeout=self.timeout, **kwargs
            )
        except requests.exceptions.RequestException as exc:
            raise ApiError(None, message=f"Failed to reach Marathon at {url}: {exc}") from exc

        if not 200 <= response.status_code < 300:
            raise ApiError(response.status_code, _format_body(response))
        return response

    def update_app(
        self, app_id: str, definition: ApplicationDefinition, force_update: bool = False
    ) -> DeploymentResult:
        """PUT `definition` to ``/v2/apps/{app_id}``.

        Raises:
            ApiError: for any non-2xx response or transport failure
        """
        url = self.app_url(app_id)
        logger.debug("PUT %s (force=%s)", url, force_update)
        response = self._request(
            "PUT",
            url,
            params={"force": "true" if force_update else "false"},
            data=definition.to_json(),
        )
        try:
            payload = response.json()
        except ValueError:
            payload = None
        result = DeploymentResult.from_payload(payload)
        logger.info(
            "Marathon accepted update of '%s' (deployment %s, version %s)",
            app_id,
            result.deployment_id,
            result.version,
        )
        return result

    def get_deployments(self) -> List[Deployment]:
        response = self._request("GET", f"{self.base_url}/v2/deployments")
        try:
            payload = response.json()
        except ValueError as exc:
            raise ApiError(
                response.status_code, message="Marathon returned an unreadable deployment list"
            ) from exc
        if not isinstance(payload, list):
            raise ApiError(
                response.status_code, message="Marathon deployment list is not a JSON array"
            )
        return [Deployment.from_payload(item) for item in payload if isinstance(item, dict)]
