"""Behavioural coverage for bootstrapping the docs k3s node."""

from __future__ import annotations

import io
import typing as typ
from contextlib import redirect_stdout

import pytest
from pytest_bdd import given, parsers, scenario, then, when
from ruamel.yaml import YAML

from docdeploy.cli import main

if typ.TYPE_CHECKING:
    from pathlib import Path

    from tests.conftest import MockSubprocessCapture, PipelineCapture


class BootstrapContext(typ.TypedDict, total=False):
    """Shared mutable scenario state."""

    root: Path
    stdout: str
    exit_code: int


@scenario("../bootstrap.feature", "Fresh node is bootstrapped")
def test_fresh_node_bootstrapped() -> None:
    """Wrap the pytest-bdd scenario for a fresh bootstrap."""


@scenario("../bootstrap.feature", "Rerunning bootstrap replaces edited files")
def test_rerun_replaces_edited_files() -> None:
    """Wrap the pytest-bdd scenario for an idempotent rerun."""


@scenario("../bootstrap.feature", "Bootstrap without an ACME email")
def test_bootstrap_without_email() -> None:
    """Wrap the pytest-bdd scenario for the missing email failure."""


@pytest.fixture
def bootstrap_context(tmp_path: Path) -> BootstrapContext:
    """Provide shared context for the BDD steps."""
    return {"root": tmp_path / "node", "stdout": "", "exit_code": -1}


def _k3s_config(ctx: BootstrapContext) -> Path:
    return ctx["root"] / "etc/rancher/k3s/config.yaml"


def _sysctl(ctx: BootstrapContext) -> Path:
    return ctx["root"] / "etc/sysctl.d/ports.conf"


def _traefik(ctx: BootstrapContext) -> Path:
    return ctx["root"] / "var/lib/rancher/k3s/server/manifests/traefik-config.yaml"


def _run_bootstrap(ctx: BootstrapContext, extra: list[str]) -> None:
    """Run the bootstrap command against the scenario's node root."""
    args = [
        "bootstrap",
        "--k3s-config-path",
        str(_k3s_config(ctx)),
        "--sysctl-path",
        str(_sysctl(ctx)),
        "--traefik-config-path",
        str(_traefik(ctx)),
        *extra,
    ]
    captured = io.StringIO()
    with redirect_stdout(captured):
        try:
            ctx["exit_code"] = main(args)
        except SystemExit as e:
            ctx["exit_code"] = e.code if isinstance(e.code, int) else 1
    ctx["stdout"] = captured.getvalue()


# Background step
@given("the tools curl, sh and sysctl are available")
def given_tools_available(
    monkeypatch: pytest.MonkeyPatch,
    mock_subprocess_run: MockSubprocessCapture,
    mock_popen: PipelineCapture,
) -> None:
    """Report every tool as installed and mock process execution."""
    monkeypatch.setattr("shutil.which", lambda name: f"/usr/bin/{name}")
    monkeypatch.delenv("DOCDEPLOY_ACME_EMAIL", raising=False)


# Given steps
@given("an empty node filesystem")
def given_empty_node(bootstrap_context: BootstrapContext) -> None:
    """Create the node root without any configuration."""
    bootstrap_context["root"].mkdir(parents=True)


@given("a node with a hand-edited sysctl override")
def given_edited_sysctl(bootstrap_context: BootstrapContext) -> None:
    """Leave unrelated settings in the sysctl override."""
    path = _sysctl(bootstrap_context)
    path.parent.mkdir(parents=True)
    path.write_text("net.ipv4.ip_forward=1\nnet.ipv4.ip_unprivileged_port_start=1024\n")


# When steps
@when(parsers.parse("I run docdeploy bootstrap with ACME email {email}"))
def when_bootstrap_with_email(bootstrap_context: BootstrapContext, email: str) -> None:
    """Run bootstrap with the given email."""
    _run_bootstrap(bootstrap_context, ["--acme-email", email])


@when("I run docdeploy bootstrap without an ACME email")
def when_bootstrap_without_email(bootstrap_context: BootstrapContext) -> None:
    """Run bootstrap with no email configured."""
    _run_bootstrap(bootstrap_context, [])


# Then steps
@then(parsers.parse("the command exits with code {code:d}"))
def then_exit_code(bootstrap_context: BootstrapContext, code: int) -> None:
    """Check the command's exit code."""
    assert bootstrap_context["exit_code"] == code


@then("the k3s config disables servicelb and metrics-server")
def then_k3s_config(bootstrap_context: BootstrapContext) -> None:
    """The k3s config carries the disable list."""
    document = YAML(typ="safe").load(_k3s_config(bootstrap_context).read_text())
    assert document == {"disable": "servicelb,metrics-server"}


@then("the sysctl override allows unprivileged ports")
def then_sysctl_override(bootstrap_context: BootstrapContext) -> None:
    """The override is exactly the one port relaxation line."""
    assert (
        _sysctl(bootstrap_context).read_text()
        == "net.ipv4.ip_unprivileged_port_start=0\n"
    )


@then(parsers.parse("the Traefik overlay registers {email}"))
def then_traefik_overlay(bootstrap_context: BootstrapContext, email: str) -> None:
    """The overlay's values register the ACME email."""
    yaml = YAML(typ="safe")
    document = yaml.load(_traefik(bootstrap_context).read_text())
    values = yaml.load(document["spec"]["valuesContent"])
    assert (
        f"--certificatesResolvers.letsencrypt.acme.email={email}"
        in values["additionalArguments"]
    )


@then(parsers.parse("the k3s installer was piped into sh on channel {channel}"))
def then_installer_ran(mock_popen: PipelineCapture, channel: str) -> None:
    """curl fed the installer to sh with the channel in its environment."""
    assert mock_popen.stages == [("curl", "-sfL", "https://get.k3s.io"), ("sh", "-")]
    env = mock_popen.envs[-1]
    assert env is not None
    assert env["INSTALL_K3S_CHANNEL"] == channel


@then("no node configuration file exists")
def then_no_files(bootstrap_context: BootstrapContext) -> None:
    """Nothing was written under the node root."""
    assert list(bootstrap_context["root"].rglob("*")) == []


@then("the k3s installer was not run")
def then_installer_not_run(mock_popen: PipelineCapture) -> None:
    """No pipeline stage was started."""
    assert mock_popen.stages == []
