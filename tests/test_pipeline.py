import json
from pathlib import Path

import pytest
import requests_mock

from marathon_deployer.api.retry import RetryPolicy
from marathon_deployer.auth import DCOS_AUTH_COOKIE, InMemoryCredentialStore, SecretTextCredential
from marathon_deployer.config import DeploymentConfig, MarathonSettings
from marathon_deployer.errors import DeploymentCancelled
from marathon_deployer.pipeline import (
    DeploymentPipeline,
    FailureReason,
    OutcomeStatus,
    run_batch,
)
from marathon_deployer.watcher import WatchStatus

MARATHON_URL = "http://marathon.test:8080"
LOGIN_URL = "https://dcos.test/acs/api/v1/auth/login"
APP_URL = f"{MARATHON_URL}/v2/apps/web"
DEPLOYMENTS_URL = f"{MARATHON_URL}/v2/deployments"
ACCEPTED = {"deploymentId": "d-1", "version": "2024-01-01T00:00:00.000Z"}


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    (tmp_path / "marathon.json").write_text(
        json.dumps({"id": "/web", "uris": ["old"], "labels": {"team": "core"}}), encoding="utf-8"
    )
    return tmp_path


def _pipeline(workspace, sleeper, clock, **kwargs) -> DeploymentPipeline:
    settings = kwargs.pop("settings", None) or MarathonSettings(url=MARATHON_URL)
    kwargs.setdefault("retry_policy", RetryPolicy(max_attempts=3, delay=2.0))
    return DeploymentPipeline(
        settings,
        workspace=workspace,
        variables={"BUILD_NUMBER": "7"},
        sleeper=sleeper,
        clock=clock,
        **kwargs,
    )


def _puts(adapter: requests_mock.Adapter):
    return [r for r in adapter.request_history if r.method == "PUT"]


def test_missing_file_makes_no_requests(adapter, tmp_path, sleeper, clock) -> None:
    outcome = _pipeline(tmp_path, sleeper, clock).run(DeploymentConfig())

    assert outcome.status is OutcomeStatus.FAILED
    assert outcome.reason is FailureReason.FILE_MISSING
    assert adapter.request_history == []


def test_invalid_definition_fails(adapter, tmp_path, sleeper, clock) -> None:
    (tmp_path / "marathon.json").write_text("[]", encoding="utf-8")
    outcome = _pipeline(tmp_path, sleeper, clock).run(DeploymentConfig())

    assert outcome.reason is FailureReason.DEFINITION_INVALID
    assert adapter.request_history == []


def test_success_makes_one_request_and_renders(adapter, workspace, sleeper, clock) -> None:
    adapter.register_uri("PUT", APP_URL, json=ACCEPTED)
    config = DeploymentConfig(uris=("new-${BUILD_NUMBER}",), force_update=True)

    outcome = _pipeline(workspace, sleeper, clock).run(config)

    assert outcome.ok
    assert outcome.message == "Marathon application updated."
    assert outcome.result.deployment_id == "d-1"
    assert len(adapter.request_history) == 1
    sent = adapter.request_history[0]
    assert sent.json()["uris"] == ["new-7"]
    assert sent.qs == {"force": ["true"]}
    assert outcome.rendered_path == workspace / "marathon-rendered-7.json"
    assert json.loads(outcome.rendered_path.read_text(encoding="utf-8")) == sent.json()


def test_no_render_skips_file(adapter, workspace, sleeper, clock) -> None:
    adapter.register_uri("PUT", APP_URL, json=ACCEPTED)
    outcome = _pipeline(workspace, sleeper, clock).run(DeploymentConfig(rendered_filename=None))

    assert outcome.ok
    assert outcome.rendered_path is None
    assert not (workspace / "marathon-rendered-7.json").exists()


def test_conflicts_exhaust_retries(adapter, workspace, sleeper, clock) -> None:
    adapter.register_uri("PUT", APP_URL, status_code=409, json={"message": "App is locked"})

    outcome = _pipeline(workspace, sleeper, clock).run(DeploymentConfig())

    assert outcome.status is OutcomeStatus.MAX_RETRIES
    assert outcome.reason is FailureReason.MAX_RETRIES
    assert len(adapter.request_history) == 3
    assert sleeper.calls == [2.0, 2.0]


@pytest.mark.parametrize("status", [404, 503])
def test_other_errors_fail_immediately(adapter, workspace, sleeper, clock, status: int) -> None:
    adapter.register_uri("PUT", APP_URL, status_code=status, text="boom")

    outcome = _pipeline(workspace, sleeper, clock).run(DeploymentConfig())

    assert outcome.status is OutcomeStatus.FAILED
    assert outcome.reason is FailureReason.API_ERROR
    assert len(adapter.request_history) == 1
    assert sleeper.calls == []


def test_missing_url_is_reported(adapter, workspace, sleeper, clock) -> None:
    outcome = _pipeline(workspace, sleeper, clock, settings=MarathonSettings()).run(DeploymentConfig())

    assert outcome.reason is FailureReason.CONFIGURATION
    assert adapter.request_history == []


class TestReauthentication:
    @staticmethod
    def _store() -> InMemoryCredentialStore:
        service_account = {
            "uid": "jenkins",
            "login_endpoint": LOGIN_URL,
            "private_key": "k" * 64,
            "scheme": "HS256",
        }
        return InMemoryCredentialStore(
            [SecretTextCredential(id="marathon-token", secret=json.dumps(service_account))]
        )

    def test_401_refreshes_token_and_retries_once(self, adapter, workspace, sleeper, clock) -> None:
        adapter.register_uri(
            "PUT", APP_URL, [{"status_code": 401}, {"status_code": 200, "json": ACCEPTED}]
        )
        adapter.register_uri("POST", LOGIN_URL, headers={"Set-Cookie": f"{DCOS_AUTH_COOKIE}=fresh"})
        store = self._store()
        settings = MarathonSettings(url=MARATHON_URL, credentials_id="marathon-token")

        outcome = _pipeline(
            workspace, sleeper, clock, settings=settings, credential_store=store
        ).run(DeploymentConfig(force_update=True))

        assert outcome.ok
        puts = _puts(adapter)
        assert len(puts) == 2
        assert "Authorization" not in puts[0].headers
        assert puts[1].headers["Authorization"] == "token=fresh"
        assert puts[0].body == puts[1].body
        assert puts[1].qs == {"force": ["true"]}
        assert json.loads(store.get("marathon-token").secret)["token"] == "fresh"

    def test_second_401_fails(self, adapter, workspace, sleeper, clock) -> None:
        adapter.register_uri("PUT", APP_URL, status_code=401)
        adapter.register_uri("POST", LOGIN_URL, headers={"Set-Cookie": f"{DCOS_AUTH_COOKIE}=fresh"})
        settings = MarathonSettings(url=MARATHON_URL, credentials_id="marathon-token")

        outcome = _pipeline(
            workspace, sleeper, clock, settings=settings, credential_store=self._store()
        ).run(DeploymentConfig())

        assert outcome.reason is FailureReason.API_ERROR
        assert len(_puts(adapter)) == 2

    def test_401_without_credentials_propagates(self, adapter, workspace, sleeper, clock) -> None:
        adapter.register_uri("PUT", APP_URL, status_code=401)

        outcome = _pipeline(workspace, sleeper, clock).run(DeploymentConfig())

        assert outcome.reason is FailureReason.API_ERROR
        assert len(adapter.request_history) == 1

    def test_login_without_cookie_is_authentication_failure(
        self, adapter, workspace, sleeper, clock
    ) -> None:
        adapter.register_uri("PUT", APP_URL, status_code=401)
        adapter.register_uri("POST", LOGIN_URL, status_code=401)
        settings = MarathonSettings(url=MARATHON_URL, credentials_id="marathon-token")

        outcome = _pipeline(
            workspace, sleeper, clock, settings=settings, credential_store=self._store()
        ).run(DeploymentConfig())

        assert outcome.reason is FailureReason.AUTHENTICATION
        assert "k" * 64 not in outcome.message
        assert len(_puts(adapter)) == 1


class TestWaiting:
    def test_waits_until_deployment_finishes(self, adapter, workspace, sleeper, clock) -> None:
        adapter.register_uri("PUT", APP_URL, json=ACCEPTED)
        adapter.register_uri(
            "GET", DEPLOYMENTS_URL, [{"json": [{"id": "d-1"}]}, {"json": []}]
        )
        settings = MarathonSettings(url=MARATHON_URL, poll_interval=5.0)

        outcome = _pipeline(workspace, sleeper, clock, settings=settings).run(
            DeploymentConfig(wait_for_deploy=True, timeout=60)
        )

        assert outcome.ok
        assert outcome.watch.status is WatchStatus.COMPLETE
        assert outcome.watch.polls == 2

    def test_timeout_does_not_fail_submission(self, adapter, workspace, sleeper, clock) -> None:
        adapter.register_uri("PUT", APP_URL, json=ACCEPTED)
        adapter.register_uri("GET", DEPLOYMENTS_URL, json=[{"id": "d-1"}])
        settings = MarathonSettings(url=MARATHON_URL, poll_interval=10.0)

        outcome = _pipeline(workspace, sleeper, clock, settings=settings).run(
            DeploymentConfig(wait_for_deploy=True, timeout=20)
        )

        assert outcome.status is OutcomeStatus.SUCCESS
        assert outcome.watch.status is WatchStatus.TIMED_OUT
        assert "did not finish within 20 seconds" in outcome.message

    def test_poll_failure_keeps_success(self, adapter, workspace, sleeper, clock) -> None:
        adapter.register_uri("PUT", APP_URL, json=ACCEPTED)
        adapter.register_uri("GET", DEPLOYMENTS_URL, status_code=500)

        outcome = _pipeline(workspace, sleeper, clock).run(
            DeploymentConfig(wait_for_deploy=True, timeout=60)
        )

        assert outcome.ok
        assert outcome.watch.status is WatchStatus.ERROR

    def test_zero_timeout_does_not_wait(self, adapter, workspace, sleeper, clock) -> None:
        adapter.register_uri("PUT", APP_URL, json=ACCEPTED)

        outcome = _pipeline(workspace, sleeper, clock).run(
            DeploymentConfig(wait_for_deploy=True, timeout=0)
        )

        assert outcome.watch is None
        assert len(adapter.request_history) == 1


def test_cancellation_during_retry(adapter, workspace, clock) -> None:
    adapter.register_uri("PUT", APP_URL, status_code=409)

    def interrupted(seconds: float) -> None:
        raise DeploymentCancelled()

    outcome = _pipeline(workspace, interrupted, clock).run(DeploymentConfig())

    assert outcome.status is OutcomeStatus.CANCELLED
    assert len(adapter.request_history) == 1


def test_render_only_contacts_nothing(adapter, workspace, sleeper, clock) -> None:
    outcome = _pipeline(workspace, sleeper, clock).render_only(
        DeploymentConfig(app_id="/web-${BUILD_NUMBER}", rendered_filename="out/rendered.json")
    )

    assert outcome.ok
    assert adapter.request_history == []
    rendered = json.loads((workspace / "out" / "rendered.json").read_text(encoding="utf-8"))
    assert rendered["id"] == "/web-7"


def test_batch_continues_after_failure(adapter, workspace, sleeper, clock) -> None:
    adapter.register_uri("PUT", APP_URL, json=ACCEPTED)
    configs = [DeploymentConfig(filename="missing.json"), DeploymentConfig()]

    batch = run_batch(_pipeline(workspace, sleeper, clock), configs)

    assert not batch.ok
    assert [o.status for o in batch.outcomes] == [OutcomeStatus.FAILED, OutcomeStatus.SUCCESS]
    assert len(batch.failed) == 1
    assert len(adapter.request_history) == 1


def test_batch_entries_render_to_separate_files(adapter, workspace, sleeper, clock) -> None:
    adapter.register_uri("PUT", APP_URL, json=ACCEPTED)
    adapter.register_uri("PUT", f"{MARATHON_URL}/v2/apps/api", json=ACCEPTED)
    (workspace / "api.json").write_text(json.dumps({"id": "/api"}), encoding="utf-8")
    configs = [
        DeploymentConfig.from_dict({"filename": "marathon.json"}),
        DeploymentConfig.from_dict({"filename": "api.json"}),
    ]

    batch = run_batch(_pipeline(workspace, sleeper, clock), configs)

    assert batch.ok
    paths = [o.rendered_path for o in batch.outcomes]
    assert paths == [workspace / "marathon-rendered-7-1.json", workspace / "marathon-rendered-7-2.json"]
    ids = [json.loads(path.read_text(encoding="utf-8"))["id"] for path in paths]
    assert ids == ["/web", "/api"]


def test_batch_keeps_explicit_rendered_file(adapter, workspace, sleeper, clock) -> None:
    adapter.register_uri("PUT", APP_URL, json=ACCEPTED)
    configs = [DeploymentConfig(rendered_filename="web-${BUILD_NUMBER}.json")]

    batch = run_batch(_pipeline(workspace, sleeper, clock), configs)

    assert batch.outcomes[0].rendered_path == workspace / "web-7.json"
