"""Deployment pipeline: load, merge, render, submit and wait."""

from __future__ import annotations

import enum
import time
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Callable, Dict, Iterable, List, Optional, Union

import requests

from .api.client import DeploymentResult, MarathonClient
from .api.retry import CancellableSleeper, RetryPolicy, with_reauthentication
from .auth.base import TokenAuthProvider, create_auth_provider
from .auth.credentials import (
    Credential,
    CredentialStore,
    SecretTextCredential,
    authorization_header,
)
from .config import DeploymentConfig, MarathonSettings, RetrySettings
from .definition import ApplicationDefinition, load_definition, merge_definition, write_rendered
from .errors import (
    ApiError,
    AuthenticationError,
    DefinitionFileInvalid,
    DefinitionFileMissing,
    DefinitionInvalid,
    DeploymentCancelled,
    MarathonDeployError,
    MaxRetriesExceeded,
)
from .paths import DEFAULT_RENDERED_FILE, batch_rendered_file
from .template import resolve
from .utils.logging import get_logger
from .watcher import DeploymentWatcher, WatchResult, WatchStatus

logger = get_logger(__name__)

SUCCESS_MESSAGE = "Marathon application updated."
RENDERED_MESSAGE = "Marathon application definition rendered."

AuthProviderFactory = Callable[..., TokenAuthProvider]


class OutcomeStatus(str, enum.Enum):
    SUCCESS = "success"
    FAILED = "failed"
    MAX_RETRIES = "max_retries"
    CANCELLED = "cancelled"


class FailureReason(str, enum.Enum):
    FILE_MISSING = "file_missing"
    FILE_INVALID = "file_invalid"
    DEFINITION_INVALID = "definition_invalid"
    AUTHENTICATION = "authentication"
    API_ERROR = "api_error"
    MAX_RETRIES = "max_retries"
    CANCELLED = "cancelled"
    CONFIGURATION = "configuration"


_REASONS = (
    (DefinitionFileMissing, FailureReason.FILE_MISSING),
    (DefinitionFileInvalid, FailureReason.FILE_INVALID),
    (DefinitionInvalid, FailureReason.DEFINITION_INVALID),
    (AuthenticationError, FailureReason.AUTHENTICATION),
    (MaxRetriesExceeded, FailureReason.MAX_RETRIES),
    (ApiError, FailureReason.API_ERROR),
    (DeploymentCancelled, FailureReason.CANCELLED),
)


def _reason_for(error: MarathonDeployError) -> FailureReason:
    for error_type, reason in _REASONS:
        if isinstance(error, error_type):
            return reason
    return FailureReason.CONFIGURATION


@dataclass
class DeploymentOutcome:
    """Result of one pipeline run as reported to the caller."""

    config: DeploymentConfig
    status: OutcomeStatus
    message: str
    reason: Optional[FailureReason] = None
    result: Optional[DeploymentResult] = None
    watch: Optional[WatchResult] = None
    rendered_path: Optional[Path] = None

    @property
    def ok(self) -> bool:
        return self.status is OutcomeStatus.SUCCESS


@dataclass
class BatchResult:
    outcomes: List[DeploymentOutcome] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return all(outcome.ok for outcome in self.outcomes)

    @property
    def failed(self) -> List[DeploymentOutcome]:
        return [outcome for outcome in self.outcomes if not outcome.ok]


class DeploymentPipeline:
    """Runs the deployment lifecycle for one or more DeploymentConfigs.

    Collaborators are injected so tests (and embedding hosts) can swap the
    credential store, HTTP session, sleep function and clock.
    """

    def __init__(
        self,
        settings: MarathonSettings,
        *,
        workspace: Union[str, Path] = ".",
        variables: Optional[Dict[str, str]] = None,
        retry_policy: Optional[RetryPolicy] = None,
        credential_store: Optional[CredentialStore] = None,
        session: Optional[requests.Session] = None,
        sleeper: Optional[Callable[[float], None]] = None,
        clock: Callable[[], float] = time.monotonic,
        auth_provider_factory: AuthProviderFactory = create_auth_provider,
    ) -> None:
        self.settings = settings
        self.workspace = Path(workspace)
        self.variables = dict(variables or {})
        self.retry_policy = retry_policy or RetryPolicy()
        self.credential_store = credential_store
        self.session = session or requests.Session()
        self.sleeper = sleeper if sleeper is not None else CancellableSleeper()
        self.clock = clock
        self.auth_provider_factory = auth_provider_factory

    @classmethod
    def from_settings(
        cls, settings: MarathonSettings, retry: RetrySettings, **kwargs
    ) -> "DeploymentPipeline":
        policy = RetryPolicy(max_attempts=retry.max_attempts, delay=retry.delay)
        return cls(settings, retry_policy=policy, **kwargs)

    # -- individual steps -------------------------------------------------

    def load(self, config: DeploymentConfig) -> ApplicationDefinition:
        return load_definition(self.workspace, config.filename)

    def merge(
        self, definition: ApplicationDefinition, config: DeploymentConfig
    ) -> ApplicationDefinition:
        return merge_definition(definition, config, self.variables)

    def render_to_file(
        self, definition: ApplicationDefinition, config: DeploymentConfig
    ) -> Optional[Path]:
        if not config.rendered_filename:
            return None
        return write_rendered(definition, self.workspace, config.rendered_filename, self.variables)

    def submit(
        self, definition: ApplicationDefinition, config: DeploymentConfig
    ) -> DeploymentResult:
        """Send the update, retrying conflicts and re-authenticating once on 401."""
        app_id = definition.app_id
        if not app_id:
            raise DefinitionInvalid("Application definition has no 'id' field")

        client = self._client()
        reauthenticate = None
        if self.settings.credentials_id and self.credential_store is not None:
            reauthenticate = lambda: self._reauthenticate(client)  # noqa: E731

        operation = with_reauthentication(
            lambda: client.update_app(app_id, definition, config.force_update),
            reauthenticate,
        )
        return self.retry_policy.run(operation, self.sleeper)

    def wait_for_completion(
        self,
        result: DeploymentResult,
        config: DeploymentConfig,
        started_at: Optional[float] = None,
    ) -> WatchResult:
        watcher = DeploymentWatcher(
            self._client(),
            poll_interval=self.settings.poll_interval,
            sleeper=self.sleeper,
            clock=self.clock,
        )
        return watcher.wait(result.deployment_id or "", config.timeout, started_at)

    # -- full runs --------------------------------------------------------

    def run(self, config: DeploymentConfig, submit: bool = True) -> DeploymentOutcome:
        """Run every step for `config` and convert failures into an outcome."""
        rendered_path: Optional[Path] = None
        result: Optional[DeploymentResult] = None
        try:
            merged = self.merge(self.load(config), config)
            rendered_path = self.render_to_file(merged, config)
            if not submit:
                return DeploymentOutcome(
                    config, OutcomeStatus.SUCCESS, RENDERED_MESSAGE, rendered_path=rendered_path
                )
            started_at = self.clock()
            result = self.submit(merged, config)
            logger.info(SUCCESS_MESSAGE)

            watch = None
            if config.waits:
                if result.deployment_id:
                    watch = self.wait_for_completion(result, config, started_at)
                else:
                    logger.warning("Marathon did not return a deployment id; not waiting")
        except DeploymentCancelled as exc:
            logger.error("%s", exc)
            return DeploymentOutcome(
                config,
                OutcomeStatus.CANCELLED,
                str(exc),
                reason=FailureReason.CANCELLED,
                result=result,
                rendered_path=rendered_path,
            )
        except MaxRetriesExceeded as exc:
            logger.error("%s", exc)
            return DeploymentOutcome(
                config,
                OutcomeStatus.MAX_RETRIES,
                str(exc),
                reason=FailureReason.MAX_RETRIES,
                rendered_path=rendered_path,
            )
        except MarathonDeployError as exc:
            logger.error("Deployment of '%s' failed: %s", config.filename, exc)
            return DeploymentOutcome(
                config,
                OutcomeStatus.FAILED,
                str(exc),
                reason=_reason_for(exc),
                rendered_path=rendered_path,
            )

        message = SUCCESS_MESSAGE
        if watch is not None and watch.status is WatchStatus.TIMED_OUT:
            message = f"{SUCCESS_MESSAGE} {watch.timeout_error}"
        elif watch is not None and watch.status is WatchStatus.ERROR:
            message = f"{SUCCESS_MESSAGE} Deployment status unknown: {watch.error}"
        return DeploymentOutcome(
            config,
            OutcomeStatus.SUCCESS,
            message,
            result=result,
            watch=watch,
            rendered_path=rendered_path,
        )

    def render_only(self, config: DeploymentConfig) -> DeploymentOutcome:
        return self.run(config, submit=False)

    # -- helpers ----------------------------------------------------------

    def _client(self) -> MarathonClient:
        url = resolve(self.settings.url, self.variables)
        if not url:
            raise MarathonDeployError("Marathon URL is not configured")
        return MarathonClient(
            url,
            authorization=authorization_header(self._credential(self.settings.credentials_id)),
            session=self.session,
            timeout=self.settings.request_timeout,
        )

    def _credential(self, credential_id: Optional[str]) -> Optional[Credential]:
        if not credential_id:
            return None
        if self.credential_store is None:
            logger.warning("No credential store configured; ignoring credentials '%s'", credential_id)
            return None
        credential = self.credential_store.get(credential_id)
        if credential is None:
            logger.warning("Credentials '%s' not found in the credential store", credential_id)
        return credential

    def _reauthenticate(self, client: MarathonClient) -> bool:
        token_id = self.settings.credentials_id
        token_credential = self._credential(token_id)
        if not isinstance(token_credential, SecretTextCredential):
            logger.warning("Credentials '%s' cannot hold a token; not re-authenticating", token_id)
            return False

        login_id = self.settings.login_credentials_id
        login_credential = self._credential(login_id)
        if not isinstance(login_credential, SecretTextCredential):
            raise AuthenticationError(f"Service account credentials '{login_id}' not found")

        provider = self.auth_provider_factory(
            self.settings.auth_provider,
            login_credential,
            self.credential_store,
            session=self.session,
            timeout=self.settings.request_timeout,
        )
        if not provider.update_credential(token_credential):
            return False

        client.authorization = authorization_header(self._credential(token_id))
        logger.info("Retrying Marathon update with refreshed token from '%s'", token_id)
        return True


def run_batch(pipeline: DeploymentPipeline, configs: Iterable[DeploymentConfig]) -> BatchResult:
    """Run `configs` one after another; a failure does not stop the rest.

    Entries left on the default rendered file name are given a per-entry
    name instead, so one entry's output is not overwritten by the next.
    """
    batch = BatchResult()
    for index, config in enumerate(configs, start=1):
        if config.rendered_filename == DEFAULT_RENDERED_FILE:
            config = replace(config, rendered_filename=batch_rendered_file(index))
        logger.info("Deployment %d: %s", index, config.filename)
        outcome = pipeline.run(config)
        batch.outcomes.append(outcome)
        if outcome.status is OutcomeStatus.CANCELLED:
            logger.warning("Batch cancelled; skipping remaining deployments")
            break
    return batch
