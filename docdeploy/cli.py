"""Command-line entry point for docdeploy.

Usage:
    docdeploy bootstrap --acme-email ops@example.org   # run on the node, as root
    docdeploy upgrade                                  # rerun the k3s installer
    docdeploy deploy --project-dir ../docserver        # build and ship docserver
    docdeploy status                                   # pod status on the node
    docdeploy logs --follow                            # docserver logs
    docdeploy render-cluster --acme-email ...          # print bootstrap files
    docdeploy render-manifests                         # print the manifest set

Environment variables:
    DOCDEPLOY_K3S_CHANNEL   - k3s release channel (default: latest)
    DOCDEPLOY_ACME_EMAIL    - ACME contact email (required for bootstrap)
    DOCDEPLOY_HOST          - Remote node hostname (default: docs.embassy.dev)
    DOCDEPLOY_SSH_USER      - Remote ssh user (default: root)
    DOCDEPLOY_PROJECT_DIR   - docserver checkout (default: current directory)
    DOCDEPLOY_IMAGE_REPO    - Image repository (default: embassy.dev/docserver)
    DOCDEPLOY_LOG_LEVEL     - Log level (default: INFO)
"""

from __future__ import annotations

import os
import sys
import typing as typ
from pathlib import Path

from cyclopts import App, Parameter

from docdeploy import __version__
from docdeploy.build import image_reference
from docdeploy.config import ClusterConfig, DeployConfig, RemoteHost
from docdeploy.errors import DocDeployError
from docdeploy.logging import configure_logging, get_logger, log_exception, log_warning
from docdeploy.orchestration import (
    bootstrap_cluster,
    deploy_application,
    read_manifest_template,
    render_manifest,
    show_remote_status,
    stream_remote_logs,
    upgrade_cluster,
)
from docdeploy.render import k3s_config_yaml, sysctl_override, traefik_config_yaml

logger = get_logger(__name__)

app = App(
    name="docdeploy",
    help="Bootstrap the docs k3s node and deploy docserver to it",
    version=__version__,
)

Channel = typ.Annotated[str, Parameter(env_var="DOCDEPLOY_K3S_CHANNEL")]
AcmeEmail = typ.Annotated[str | None, Parameter(env_var="DOCDEPLOY_ACME_EMAIL")]
Host = typ.Annotated[str, Parameter(env_var="DOCDEPLOY_HOST")]
SshUser = typ.Annotated[str, Parameter(env_var="DOCDEPLOY_SSH_USER")]
ProjectDir = typ.Annotated[Path, Parameter(env_var="DOCDEPLOY_PROJECT_DIR")]
ImageRepo = typ.Annotated[str, Parameter(env_var="DOCDEPLOY_IMAGE_REPO")]

_DEFAULT_CLUSTER = ClusterConfig()
_DEFAULT_DEPLOY = DeployConfig()


@app.command
def bootstrap(  # noqa: PLR0913
    *,
    channel: Channel = _DEFAULT_CLUSTER.channel,
    acme_email: AcmeEmail = None,
    dns_ports: bool = True,
    reload_sysctl: bool = True,
    k3s_config_path: Path = _DEFAULT_CLUSTER.k3s_config_path,
    sysctl_path: Path = _DEFAULT_CLUSTER.sysctl_path,
    traefik_config_path: Path = _DEFAULT_CLUSTER.traefik_config_path,
) -> int:
    """Install k3s on this host and configure Traefik for Let's Encrypt.

    Safe to run repeatedly; every configuration file is rewritten in full
    and rerunning the installer upgrades k3s within the channel.

    Args:
        channel: k3s release channel.
        acme_email: Contact email registered with Let's Encrypt.
        dns_ports: Also bind Traefik to port 53 (UDP and TCP).
        reload_sysctl: Apply the sysctl override immediately.
        k3s_config_path: Where to write the k3s server config.
        sysctl_path: Where to write the sysctl override.
        traefik_config_path: Where to write the Traefik HelmChartConfig.

    Returns:
        Exit code (0 for success, non-zero for failure).

    """
    cfg = ClusterConfig(
        channel=channel,
        acme_email=acme_email,
        dns_ports=dns_ports,
        reload_sysctl=reload_sysctl,
        k3s_config_path=k3s_config_path,
        sysctl_path=sysctl_path,
        traefik_config_path=traefik_config_path,
    )
    return bootstrap_cluster(cfg)


@app.command
def upgrade(*, channel: Channel = _DEFAULT_CLUSTER.channel) -> int:
    """Upgrade k3s to the newest release of a channel.

    Args:
        channel: k3s release channel.

    Returns:
        Exit code (0 for success, non-zero for failure).

    """
    return upgrade_cluster(ClusterConfig(channel=channel))


@app.command
def deploy(  # noqa: PLR0913
    *,
    host: Host = _DEFAULT_DEPLOY.remote.host,
    ssh_user: SshUser = _DEFAULT_DEPLOY.remote.user,
    project_dir: ProjectDir = _DEFAULT_DEPLOY.project_dir,
    image_repo: ImageRepo = _DEFAULT_DEPLOY.image_repo,
    hostname: str | None = None,
    namespace: str = _DEFAULT_DEPLOY.namespace,
    manifest_template: Path | None = None,
    progress: bool = True,
    wait: bool = False,
    rollout_timeout: int = _DEFAULT_DEPLOY.rollout_timeout,
) -> int:
    """Build docserver, ship the image to the node and apply the manifests.

    Args:
        host: Remote node running k3s.
        ssh_user: User to ssh in as.
        project_dir: docserver checkout to build.
        image_repo: Repository part of the image reference.
        hostname: Public hostname for the IngressRoute (defaults to host).
        namespace: Kubernetes namespace for docserver.
        manifest_template: deploy.yaml template with an $IMAGE placeholder.
        progress: Show transfer progress through pv.
        wait: Wait for the Deployment rollout to finish.
        rollout_timeout: Seconds to wait for the rollout.

    Returns:
        Exit code (0 for success, non-zero for failure).

    """
    cfg = DeployConfig(
        remote=RemoteHost(host=host, user=ssh_user),
        project_dir=project_dir,
        image_repo=image_repo,
        hostname=hostname,
        namespace=namespace,
        manifest_template=manifest_template,
        progress=progress,
        wait_for_rollout=wait,
        rollout_timeout=rollout_timeout,
    )
    return deploy_application(cfg)


@app.command
def status(
    *,
    host: Host = _DEFAULT_DEPLOY.remote.host,
    ssh_user: SshUser = _DEFAULT_DEPLOY.remote.user,
    namespace: str = _DEFAULT_DEPLOY.namespace,
) -> int:
    """Show docserver pod status on the remote node.

    Args:
        host: Remote node running k3s.
        ssh_user: User to ssh in as.
        namespace: Kubernetes namespace for docserver.

    Returns:
        Exit code (0 for success, non-zero for failure).

    """
    cfg = DeployConfig(remote=RemoteHost(host=host, user=ssh_user), namespace=namespace)
    return show_remote_status(cfg)


@app.command
def logs(
    *,
    host: Host = _DEFAULT_DEPLOY.remote.host,
    ssh_user: SshUser = _DEFAULT_DEPLOY.remote.user,
    namespace: str = _DEFAULT_DEPLOY.namespace,
    follow: bool = False,
) -> int:
    """Print docserver logs from the remote node.

    Args:
        host: Remote node running k3s.
        ssh_user: User to ssh in as.
        namespace: Kubernetes namespace for docserver.
        follow: Continuously stream logs (like tail -f).

    Returns:
        Exit code (0 for success, non-zero for failure).

    """
    cfg = DeployConfig(remote=RemoteHost(host=host, user=ssh_user), namespace=namespace)
    return stream_remote_logs(cfg, follow=follow)


@app.command
def render_cluster(
    *,
    acme_email: AcmeEmail = None,
    dns_ports: bool = True,
) -> int:
    """Print the files bootstrap would write, without touching the host.

    Args:
        acme_email: Contact email registered with Let's Encrypt.
        dns_ports: Also bind Traefik to port 53 (UDP and TCP).

    Returns:
        Exit code (0 for success, non-zero for failure).

    """
    cfg = ClusterConfig(acme_email=acme_email, dns_ports=dns_ports)
    documents = [
        (cfg.k3s_config_path, k3s_config_yaml(cfg)),
        (cfg.sysctl_path, sysctl_override()),
        (cfg.traefik_config_path, traefik_config_yaml(cfg)),
    ]
    for path, content in documents:
        print(f"# {path}")
        print(content, end="")
    return 0


@app.command
def render_manifests(
    *,
    host: Host = _DEFAULT_DEPLOY.remote.host,
    image: str | None = None,
    image_repo: ImageRepo = _DEFAULT_DEPLOY.image_repo,
    hostname: str | None = None,
    namespace: str = _DEFAULT_DEPLOY.namespace,
    manifest_template: Path | None = None,
) -> int:
    """Print the manifest stream deploy would apply.

    Args:
        host: Remote node running k3s.
        image: Image reference to render (defaults to a fresh tag).
        image_repo: Repository part of the image reference.
        hostname: Public hostname for the IngressRoute (defaults to host).
        namespace: Kubernetes namespace for docserver.
        manifest_template: deploy.yaml template with an $IMAGE placeholder.

    Returns:
        Exit code (0 for success, non-zero for failure).

    """
    cfg = DeployConfig(
        remote=RemoteHost(host=host),
        image_repo=image_repo,
        hostname=hostname,
        namespace=namespace,
        manifest_template=manifest_template,
    )
    template = read_manifest_template(cfg)
    print(render_manifest(cfg, image or image_reference(cfg.image_repo), template), end="")
    return 0


def main(argv: list[str] | None = None) -> int:
    """Entry point for the CLI."""
    raw_level = os.environ.get("DOCDEPLOY_LOG_LEVEL", "INFO")
    level, invalid = configure_logging(raw_level, force=True)
    if invalid:
        log_warning(logger, "Unknown log level %r; using %s", raw_level, level)

    try:
        result = app(argv)
    except DocDeployError as exc:
        log_exception(logger, f"docdeploy failed: {exc}", exc)
        return 1
    return result if isinstance(result, int) else 0


if __name__ == "__main__":
    sys.exit(main())
