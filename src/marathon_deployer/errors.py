"""Exceptions raised while rendering and submitting a deployment."""

from __future__ import annotations

from typing import Optional


class MarathonDeployError(RuntimeError):
    """Base class for every failure surfaced by the deployment pipeline."""


class DefinitionFileMissing(MarathonDeployError):
    """Raised when the application definition file does not exist."""

    def __init__(self, filename: str) -> None:
        self.filename = filename
        super().__init__(f"Application definition '{filename}' not found")


class DefinitionFileInvalid(MarathonDeployError):
    """Raised when a definition or rendered-output path is not a regular file."""


class DefinitionInvalid(MarathonDeployError):
    """Raised when the definition does not parse to a non-empty JSON object."""


class AuthenticationError(MarathonDeployError):
    """Raised when a token cannot be obtained.

    Messages may name a credential id but never contain secret material.
    """


class ApiError(MarathonDeployError):
    """Non-2xx response (or transport failure) from the orchestrator."""

    def __init__(self, status: Optional[int], body: str = "", message: Optional[str] = None) -> None:
        self.status = status
        self.body = body
        if message is None:
            message = f"Marathon API returned HTTP {status}"
            if body:
                message = f"{message}\n{body}"
        super().__init__(message)

    @property
    def conflict(self) -> bool:
        return self.status == 409

    @property
    def unauthorized(self) -> bool:
        return self.status == 401


class MaxRetriesExceeded(MarathonDeployError):
    """Raised when every attempt ended in a retryable (conflict) response."""

    def __init__(self, attempts: int, last_error: Optional[ApiError] = None) -> None:
        self.attempts = attempts
        self.last_error = last_error
        message = f"Reached max retries ({attempts}) updating Marathon application"
        if last_error is not None and last_error.status is not None:
            message = f"{message}; last http status: {last_error.status}"
        super().__init__(message)


class DeploymentTimeout(MarathonDeployError):
    """The deployment was still active when the wait window elapsed."""

    def __init__(self, deployment_id: str, timeout: float) -> None:
        self.deployment_id = deployment_id
        self.timeout = timeout
        super().__init__(
            f"Deployment '{deployment_id}' did not finish within {timeout:g} seconds"
        )


class DeploymentCancelled(MarathonDeployError):
    """A host-level interrupt aborted a retry or poll wait."""

    def __init__(self, message: str = "Deployment wait was cancelled") -> None:
        super().__init__(message)
