"""Tests for the argparse front end in gta.py."""

from unittest.mock import patch

import pytest
from google.api_core.exceptions import PermissionDenied, RetryError
from google.auth.exceptions import RefreshError
from google.iam.v1 import policy_pb2

import gta
import gta_config
from conftest import temp_binding
from gcp_iam import GCPProvider


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    monkeypatch.setattr(gta_config, "default_config_path", lambda: tmp_path / "missing.yaml")
    for key in gta_config.KEYS:
        monkeypatch.delenv(gta_config.ENV_PREFIX + key.upper(), raising=False)


@pytest.fixture
def providers(fake_client, monkeypatch):
    made = []

    def _make(dry_run):
        p = GCPProvider(client=fake_client, dry_run=dry_run)
        made.append(p)
        return p

    monkeypatch.setattr(gta, "make_provider", _make)
    return made


def test_grant_waits_then_revokes(providers, fake_client):
    def _interrupt():
        # roles are live while we wait
        assert len(fake_client.policy.bindings) == 2
        return 2

    with patch.object(gta, "wait_for_interrupt", side_effect=_interrupt) as waited:
        rc = gta.main(["grant", "viewer", "editor", "-p", "p", "-u", "a@example.com", "--ttl", "30m"])

    assert rc == 0
    waited.assert_called_once()
    assert len(fake_client.policy.bindings) == 0
    assert providers[0].granted_roles == []


def test_grant_dry_run_skips_wait(providers, fake_client):
    with patch.object(gta, "wait_for_interrupt") as waited:
        rc = gta.main(["grant", "viewer", "--project", "p", "--user", "a@example.com", "--dry-run"])

    assert rc == 0
    waited.assert_not_called()
    assert providers[0].dry_run is True
    assert fake_client.set_requests == []


def test_grant_all_failed_exits_1(providers, fake_client):
    fake_client.get_failures = [PermissionDenied("denied")]
    with patch.object(gta, "wait_for_interrupt") as waited:
        rc = gta.main(["grant", "viewer", "-p", "p", "-u", "a@example.com"])

    assert rc == 1
    waited.assert_not_called()


def test_grant_auth_failure_on_one_role_still_revokes_the_rest(providers, fake_client):
    fake_client.get_failures = [None, RefreshError("token expired")]

    with patch.object(gta, "wait_for_interrupt", return_value=2) as waited:
        rc = gta.main(["grant", "viewer", "editor", "-p", "p", "-u", "a@example.com"])

    assert rc == 0
    waited.assert_called_once()
    assert len(fake_client.policy.bindings) == 0


def test_interrupt_during_grant_revokes_what_was_granted(providers, fake_client):
    """Ctrl+C between roles exits 130 without leaving the earlier bindings behind."""
    fake_client.set_failures = [None, KeyboardInterrupt()]

    with patch.object(gta, "wait_for_interrupt") as waited:
        rc = gta.main(["grant", "viewer", "editor", "-p", "p", "-u", "a@example.com"])

    assert rc == 130
    waited.assert_not_called()
    assert len(fake_client.policy.bindings) == 0
    assert providers[0].granted_roles == []


def test_list_and_clean(providers, fake_client, capsys):
    fake_client.policy.bindings.append(
        temp_binding("roles/viewer", ["user:a@example.com"], "gta_temporary_access_1"))

    assert gta.main(["list", "-p", "p"]) == 0
    assert "Found temporary binding: Role=roles/viewer" in capsys.readouterr().err

    assert gta.main(["clean", "-p", "p", "--dry-run"]) == 0
    assert len(fake_client.policy.bindings) == 1

    assert gta.main(["clean", "-p", "p"]) == 0
    assert len(fake_client.policy.bindings) == 0


def test_list_read_failure_exits_1(providers, fake_client):
    fake_client.get_failures = [PermissionDenied("denied")]
    assert gta.main(["list", "-p", "p"]) == 1


def test_list_retry_deadline_exits_1(providers, fake_client):
    fake_client.get_failures = [RetryError("deadline", cause=None)]
    assert gta.main(["list", "-p", "p"]) == 1


def test_missing_project_is_usage_error(providers):
    with pytest.raises(SystemExit) as exc:
        gta.main(["list"])
    assert exc.value.code == 2


@pytest.mark.parametrize("ttl", ["0s", "soon"])
def test_bad_ttl_is_usage_error(providers, ttl):
    with pytest.raises(SystemExit) as exc:
        gta.main(["grant", "viewer", "-p", "p", "--ttl", ttl])
    assert exc.value.code == 2


def test_bad_verbosity_is_usage_error(providers):
    with pytest.raises(SystemExit) as exc:
        gta.main(["list", "-p", "p", "--verbosity", "loud"])
    assert exc.value.code == 2


def test_global_options_before_or_after_command(providers, capsys):
    assert gta.main(["--quiet", "list", "-p", "p"]) == 0
    assert capsys.readouterr().err == ""

    assert gta.main(["list", "-p", "p", "--format", "json"]) == 0
    assert '"message": "No temporary bindings found"' in capsys.readouterr().err


def test_project_and_ttl_from_config(providers, fake_client, tmp_path):
    cfg = tmp_path / "gta.yaml"
    cfg.write_text("project: cfg-project\nuser: a@example.com\nttl: 2h\n", encoding="utf-8")

    with patch.object(gta, "wait_for_interrupt", return_value=15):
        assert gta.main(["--config", str(cfg), "grant", "viewer"]) == 0

    assert fake_client.get_requests[0].resource == "projects/cfg-project"


def test_missing_config_file_is_usage_error(providers, tmp_path):
    with pytest.raises(SystemExit) as exc:
        gta.main(["--config", str(tmp_path / "nope.yaml"), "list", "-p", "p"])
    assert exc.value.code == 2


def test_wait_for_interrupt_returns_when_stopped():
    import threading

    stop = threading.Event()
    stop.set()
    assert gta.wait_for_interrupt(stop, poll=0.01) == 0
