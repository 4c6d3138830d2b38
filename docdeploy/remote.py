"""Operations on the remote k3s node, all tunnelled through ssh.

The docs host has no registry: images are streamed straight into the node's
containerd (``k8s.io`` namespace) with ``docker save | ssh ... ctr images
import``, and manifests are fed to the node's own ``kubectl`` on stdin.

Examples
--------
Ship an image and apply the manifests:

    remote = RemoteHost("docs.embassy.dev")
    transfer_image("embassy.dev/docserver:20240101120000", remote)
    apply_manifest(manifest_text, remote)

"""

from __future__ import annotations

import typing as typ

from docdeploy.config import validate_timeout
from docdeploy.logging import get_logger, log_info
from docdeploy.process import run_command, run_pipeline

if typ.TYPE_CHECKING:
    from docdeploy.config import DeployConfig, RemoteHost

logger = get_logger(__name__)

CONTAINERD_NAMESPACE = "k8s.io"

_TRANSFER_TIMEOUT = 1800
_APPLY_TIMEOUT = 120
_QUERY_TIMEOUT = 30


def ssh_command(remote: RemoteHost, *args: str) -> list[str]:
    """Return argv running ``args`` on ``remote`` (``ssh user@host -- ...``)."""
    return ["ssh", remote.destination, "--", *args]


def transfer_image(image: str, remote: RemoteHost, *, progress: bool = True) -> None:
    """Stream ``image`` from the local docker daemon into the node's containerd.

    Parameters
    ----------
    image : str
        Full image reference, including the tag.
    remote : RemoteHost
        Node to import the image on.
    progress : bool
        Pipe the stream through ``pv`` to show throughput.

    Raises
    ------
    CommandFailedError
        If any stage of the pipeline fails.

    """
    stages = [["docker", "save", image]]
    if progress:
        stages.append(["pv"])
    stages.append(
        ssh_command(
            remote,
            "ctr",
            f"-n={CONTAINERD_NAMESPACE}",
            "images",
            "import",
            "/dev/stdin",
        )
    )
    log_info(logger, "Transferring %s to %s", image, remote.host)
    run_pipeline(stages, timeout=_TRANSFER_TIMEOUT)


def apply_manifest(manifest: str, remote: RemoteHost) -> None:
    """Apply a YAML manifest stream with the node's kubectl.

    Raises
    ------
    ValueError
        If the manifest is empty.
    CommandFailedError
        If ssh or kubectl fails.

    """
    if not manifest.strip():
        msg = "manifest cannot be empty"
        raise ValueError(msg)

    log_info(logger, "Applying manifests on %s", remote.host)
    run_command(
        ssh_command(remote, "kubectl", "apply", "-f", "-"),
        stdin_text=manifest,
        timeout=_APPLY_TIMEOUT,
    )


def wait_for_rollout(cfg: DeployConfig, timeout: int | None = None) -> None:
    """Block until the docserver Deployment finishes rolling out.

    Raises
    ------
    ValueError
        If timeout is outside the valid range (1-3600 seconds).

    """
    seconds = cfg.rollout_timeout if timeout is None else timeout
    validate_timeout(seconds)

    run_command(
        ssh_command(
            cfg.remote,
            "kubectl",
            "rollout",
            "status",
            f"deployment/{cfg.app_name}",
            f"--namespace={cfg.namespace}",
            f"--timeout={seconds}s",
        ),
        # Buffer beyond kubectl's own deadline for the ssh round trip.
        timeout=seconds + 30,
    )


def print_status(cfg: DeployConfig) -> None:
    """Print docserver pod status from the remote node."""
    run_command(
        ssh_command(
            cfg.remote,
            "kubectl",
            "get",
            "pods",
            f"--selector=app.kubernetes.io/name={cfg.app_name}",
            f"--namespace={cfg.namespace}",
            "-o",
            "wide",
        ),
        timeout=_QUERY_TIMEOUT,
    )


def tail_logs(cfg: DeployConfig, *, follow: bool = False) -> None:
    """Print docserver logs from the remote node.

    ``follow`` streams until interrupted, so no timeout applies to it.
    """
    args = [
        "kubectl",
        "logs",
        f"--selector=app.kubernetes.io/name={cfg.app_name}",
        f"--namespace={cfg.namespace}",
    ]
    if follow:
        args.append("--follow")

    timeout = None if follow else _QUERY_TIMEOUT
    run_command(ssh_command(cfg.remote, *args), timeout=timeout)
