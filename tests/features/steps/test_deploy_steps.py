"""Behavioural coverage for deploying docserver to the docs node."""

from __future__ import annotations

import io
import re
import typing as typ
from contextlib import redirect_stdout

import pytest
from pytest_bdd import given, parsers, scenario, then, when

from docdeploy.cli import main

if typ.TYPE_CHECKING:
    from pathlib import Path

    from tests.conftest import MockSubprocessCapture, PipelineCapture


class DeployContext(typ.TypedDict, total=False):
    """Shared mutable scenario state."""

    project: Path
    template: Path
    stdout: str
    exit_code: int


@scenario("../deploy.feature", "Successful deploy")
def test_successful_deploy() -> None:
    """Wrap the pytest-bdd scenario for a successful deploy."""


@scenario("../deploy.feature", "Deploy with a manifest template")
def test_deploy_with_template() -> None:
    """Wrap the pytest-bdd scenario for template-based manifests."""


@scenario("../deploy.feature", "Failed image transfer stops the deploy")
def test_failed_transfer_stops_deploy() -> None:
    """Wrap the pytest-bdd scenario for a failing image import."""


@pytest.fixture
def deploy_context() -> DeployContext:
    """Provide shared context for the BDD steps."""
    return {"stdout": "", "exit_code": -1}


def _built_image(mock_subprocess_run: MockSubprocessCapture) -> str:
    """Return the image reference passed to docker build."""
    build = next(call for call in mock_subprocess_run.calls if call[0] == "docker")
    return build[3]


def _run_deploy(ctx: DeployContext, extra: list[str]) -> None:
    """Run the deploy command against the scenario's checkout."""
    args = ["deploy", "--project-dir", str(ctx["project"]), *extra]
    captured = io.StringIO()
    with redirect_stdout(captured):
        try:
            ctx["exit_code"] = main(args)
        except SystemExit as e:
            ctx["exit_code"] = e.code if isinstance(e.code, int) else 1
    ctx["stdout"] = captured.getvalue()


# Background steps
@given("the tools cargo, docker, pv and ssh are available")
def given_tools_available(
    monkeypatch: pytest.MonkeyPatch,
    mock_subprocess_run: MockSubprocessCapture,
    mock_popen: PipelineCapture,
) -> None:
    """Report every tool as installed and mock process execution."""
    monkeypatch.setattr("shutil.which", lambda name: f"/usr/bin/{name}")
    for name in ("DOCDEPLOY_HOST", "DOCDEPLOY_SSH_USER", "DOCDEPLOY_IMAGE_REPO"):
        monkeypatch.delenv(name, raising=False)


@given("a docserver checkout with a release binary")
def given_checkout(deploy_context: DeployContext, docserver_project: Path) -> None:
    """Use the prebuilt docserver checkout."""
    deploy_context["project"] = docserver_project


# Given steps
@given("a deploy.yaml template with an $IMAGE placeholder")
def given_template(deploy_context: DeployContext) -> None:
    """Write a minimal deploy.yaml next to the checkout."""
    template = deploy_context["project"] / "deploy.yaml"
    template.write_text(
        "apiVersion: apps/v1\nkind: Deployment\nspec:\n  image: $IMAGE\n"
    )
    deploy_context["template"] = template


@given("the image import on the node fails")
def given_import_fails(mock_popen: PipelineCapture) -> None:
    """Make the ssh stage of the transfer pipeline fail."""
    mock_popen.returncodes["ssh"] = 1


# When steps
@when("I run docdeploy deploy")
def when_deploy(deploy_context: DeployContext) -> None:
    """Run deploy with built-in manifests."""
    _run_deploy(deploy_context, [])


@when("I run docdeploy deploy with the template")
def when_deploy_with_template(deploy_context: DeployContext) -> None:
    """Run deploy with the scenario's template."""
    _run_deploy(
        deploy_context, ["--manifest-template", str(deploy_context["template"])]
    )


# Then steps
@then(parsers.parse("the command exits with code {code:d}"))
def then_exit_code(deploy_context: DeployContext, code: int) -> None:
    """Check the command's exit code."""
    assert deploy_context["exit_code"] == code


@then(parsers.parse("cargo built the release binary for {target}"))
def then_cargo_built(mock_subprocess_run: MockSubprocessCapture, target: str) -> None:
    """cargo was the first command run."""
    assert mock_subprocess_run.calls[0] == (
        "cargo",
        "build",
        "--release",
        "--target",
        target,
    )


@then(parsers.parse("docker built an image tagged {repo} with a timestamp"))
def then_image_built(mock_subprocess_run: MockSubprocessCapture, repo: str) -> None:
    """The image tag is a 14 digit timestamp."""
    assert re.fullmatch(
        rf"{re.escape(repo)}:\d{{14}}", _built_image(mock_subprocess_run)
    )


@then(parsers.parse("the image was streamed through pv into ctr on {host}"))
def then_image_streamed(
    mock_subprocess_run: MockSubprocessCapture,
    mock_popen: PipelineCapture,
    host: str,
) -> None:
    """docker save | pv | ssh ctr images import ran for the built image."""
    image = _built_image(mock_subprocess_run)
    assert mock_popen.stages[0] == ("docker", "save", image)
    assert mock_popen.stages[1] == ("pv",)
    assert mock_popen.stages[2][:3] == ("ssh", f"root@{host}", "--")
    assert mock_popen.stages[2][3:] == (
        "ctr",
        "-n=k8s.io",
        "images",
        "import",
        "/dev/stdin",
    )


@then("the applied manifests reference the built image")
def then_manifests_applied(mock_subprocess_run: MockSubprocessCapture) -> None:
    """kubectl apply received the manifests with the image substituted."""
    image = _built_image(mock_subprocess_run)
    assert mock_subprocess_run.calls[-1][-4:] == ("kubectl", "apply", "-f", "-")
    assert f"image: {image}" in mock_subprocess_run.inputs[-1]
    assert "$IMAGE" not in mock_subprocess_run.inputs[-1]


@then("no manifests were applied")
def then_nothing_applied(mock_subprocess_run: MockSubprocessCapture) -> None:
    """ssh was never invoked to run kubectl apply."""
    assert all(call[0] != "ssh" for call in mock_subprocess_run.calls)
    assert mock_subprocess_run.inputs == []
