"""Shared pytest fixtures for docdeploy tests.

Single commands are mocked either with cmd-mox (registered via
pyproject.toml) or with a ``subprocess.run`` double when the test needs to
inspect stdin. Pipelines go through ``subprocess.Popen``, so they get their
own double that records every stage.
"""

from __future__ import annotations

import dataclasses
import io
import subprocess
import typing as typ

import pytest

from docdeploy.config import ClusterConfig, DeployConfig

if typ.TYPE_CHECKING:
    from pathlib import Path


@dataclasses.dataclass(slots=True)
class MockSubprocessCapture:
    """Captured data from mocked subprocess.run calls."""

    calls: list[tuple[str, ...]]
    inputs: list[str]
    kwargs: list[dict[str, object]]
    returncodes: dict[str, int]


@pytest.fixture
def mock_subprocess_run(
    monkeypatch: pytest.MonkeyPatch,
) -> MockSubprocessCapture:
    """Mock subprocess.run and return captured calls and inputs.

    Commands succeed unless their executable name is given a non-zero code in
    ``capture.returncodes``.
    """
    capture = MockSubprocessCapture(calls=[], inputs=[], kwargs=[], returncodes={})

    def _mock_run(
        args: list[str], **kwargs: object
    ) -> subprocess.CompletedProcess[str]:
        capture.calls.append(tuple(args))
        capture.kwargs.append(kwargs)
        if kwargs.get("input") is not None:
            capture.inputs.append(str(kwargs["input"]))
        returncode = capture.returncodes.get(args[0], 0)
        result = subprocess.CompletedProcess(
            args=args, returncode=returncode, stdout="", stderr=""
        )
        if kwargs.get("check") and returncode != 0:
            raise subprocess.CalledProcessError(returncode, args, "", "")
        return result

    monkeypatch.setattr("subprocess.run", _mock_run)
    return capture


@dataclasses.dataclass(slots=True)
class PipelineCapture:
    """Stages started through the mocked subprocess.Popen."""

    stages: list[tuple[str, ...]]
    envs: list[dict[str, str] | None]
    returncodes: dict[str, int]


class FakePopen:
    """Minimal stand-in for subprocess.Popen used by run_pipeline."""

    def __init__(
        self,
        capture: PipelineCapture,
        args: list[str],
        *,
        stdin: object = None,
        stdout: object = None,
        env: dict[str, str] | None = None,
    ) -> None:
        capture.stages.append(tuple(args))
        capture.envs.append(env)
        self.args = args
        self.stdin = stdin
        self.stdout = io.BytesIO() if stdout == subprocess.PIPE else None
        self.returncode: int | None = None
        self._exit_code = capture.returncodes.get(args[0], 0)

    def wait(self, timeout: float | None = None) -> int:
        """Finish immediately with the configured exit code."""
        del timeout
        self.returncode = self._exit_code
        return self.returncode

    def poll(self) -> int | None:
        """Report the exit code once waited for."""
        return self.returncode

    def kill(self) -> None:
        """Mark the stage as killed."""
        self.returncode = -9


@pytest.fixture
def mock_popen(monkeypatch: pytest.MonkeyPatch) -> PipelineCapture:
    """Mock subprocess.Popen and record every pipeline stage."""
    capture = PipelineCapture(stages=[], envs=[], returncodes={})

    def _factory(args: list[str], **kwargs: typ.Any) -> FakePopen:  # noqa: ANN401
        return FakePopen(
            capture,
            args,
            stdin=kwargs.get("stdin"),
            stdout=kwargs.get("stdout"),
            env=kwargs.get("env"),
        )

    monkeypatch.setattr("subprocess.Popen", _factory)
    return capture


@pytest.fixture
def all_tools_available(monkeypatch: pytest.MonkeyPatch) -> None:
    """Make shutil.which report every executable as installed."""
    monkeypatch.setattr("shutil.which", lambda name: f"/usr/bin/{name}")


@pytest.fixture
def cluster_cfg(tmp_path: Path) -> ClusterConfig:
    """Cluster configuration writing into a temporary root."""
    root = tmp_path / "host"
    return ClusterConfig(
        acme_email="ops@example.org",
        k3s_config_path=root / "etc/rancher/k3s/config.yaml",
        sysctl_path=root / "etc/sysctl.d/ports.conf",
        traefik_config_path=root
        / "var/lib/rancher/k3s/server/manifests/traefik-config.yaml",
    )


@pytest.fixture
def docserver_project(tmp_path: Path) -> Path:
    """Create a docserver checkout with a prebuilt binary and templates."""
    project = tmp_path / "docserver"
    binary = project / "target/x86_64-unknown-linux-musl/release/server"
    binary.parent.mkdir(parents=True)
    binary.write_bytes(b"\x7fELF")
    binary.chmod(0o755)
    templates = project / "templates"
    templates.mkdir()
    (templates / "index.html").write_text("<html></html>")
    (project / "docker").mkdir()
    (project / "docker/Dockerfile").write_text("FROM scratch\nCOPY rootfs /\n")
    return project


@pytest.fixture
def deploy_cfg(docserver_project: Path) -> DeployConfig:
    """Deploy configuration for the temporary docserver checkout."""
    return DeployConfig(project_dir=docserver_project)
