"""High-level workflows behind the CLI commands.

Both workflows are strictly linear: each step runs only after the previous
one succeeded, and the first exception aborts the rest. Inputs that can be
checked without side effects (tools on PATH, required settings, the manifest
template) are checked before the first step runs.
"""

from __future__ import annotations

import typing as typ

from docdeploy.build import (
    build_image,
    cargo_build_release,
    image_reference,
    stage_artifacts,
)
from docdeploy.cluster import (
    install_k3s,
    reload_sysctl,
    write_k3s_config,
    write_sysctl_override,
    write_traefik_config,
)
from docdeploy.errors import ConfigError
from docdeploy.logging import get_logger, log_info
from docdeploy.process import require_exe
from docdeploy.remote import (
    apply_manifest,
    print_status,
    tail_logs,
    transfer_image,
    wait_for_rollout,
)
from docdeploy.render import deployment_manifests_yaml, substitute_image

if typ.TYPE_CHECKING:
    import datetime as dt

    from docdeploy.config import ClusterConfig, DeployConfig

logger = get_logger(__name__)


def _require_tools(*names: str) -> None:
    log_info(logger, "Checking required tools: %s", ", ".join(names))
    for exe in names:
        require_exe(exe)


def read_manifest_template(cfg: DeployConfig) -> str | None:
    """Load the configured ``deploy.yaml`` template, if any.

    Raises
    ------
    ConfigError
        If the template is configured but unreadable or lacks ``$IMAGE``.

    """
    if cfg.manifest_template is None:
        return None
    path = cfg.resolve(cfg.manifest_template)
    try:
        template = path.read_text(encoding="utf-8")
    except OSError as e:
        msg = f"Cannot read manifest template {path}: {e}"
        raise ConfigError(msg) from e
    try:
        substitute_image(template, "")
    except ValueError as e:
        msg = f"Manifest template {path} is unusable: {e}"
        raise ConfigError(msg) from e
    return template


def check_build_inputs(cfg: DeployConfig) -> None:
    """Ensure the templates directory and docker build context exist.

    Raises
    ------
    ConfigError
        If either directory is missing from the project.

    """
    for label, path in (
        ("Templates directory", cfg.resolve(cfg.templates_dir)),
        ("Docker build context", cfg.resolve(cfg.docker_dir)),
    ):
        if not path.is_dir():
            msg = f"{label} not found at {path}"
            raise ConfigError(msg)


def render_manifest(cfg: DeployConfig, image: str, template: str | None) -> str:
    """Return the manifest stream for ``image`` from the template or built-ins."""
    if template is not None:
        return substitute_image(template, image)
    return deployment_manifests_yaml(cfg, image)


def bootstrap_cluster(cfg: ClusterConfig) -> int:
    """Install k3s and overwrite the node configuration files.

    Args:
        cfg: Cluster configuration. ``acme_email`` must be set.

    Returns:
        Exit code (0 for success).

    Raises:
        ConfigError: If ``acme_email`` is missing. Nothing has been written.
        ExecutableNotFoundError: If a required tool is missing.
        CommandFailedError: If the installer or sysctl fails.

    """
    cfg.require_acme_email()
    tools = ["curl", "sh"]
    if cfg.reload_sysctl:
        tools.append("sysctl")
    _require_tools(*tools)

    log_info(logger, "Writing k3s cluster config...")
    write_k3s_config(cfg)

    log_info(logger, "Installing k3s...")
    install_k3s(cfg)

    log_info(logger, "Relaxing the privileged port restriction...")
    write_sysctl_override(cfg)
    if cfg.reload_sysctl:
        reload_sysctl(cfg)

    log_info(logger, "Configuring Traefik...")
    write_traefik_config(cfg)

    _print_banner(
        "Cluster bootstrap complete!",
        [
            f"  Channel: {cfg.channel}",
            f"  Traefik overlay: {cfg.traefik_config_path}",
            "  To upgrade k3s later: docdeploy upgrade",
        ],
    )
    return 0


def upgrade_cluster(cfg: ClusterConfig) -> int:
    """Rerun the k3s installer to move to the channel's newest release.

    Returns:
        Exit code (0 for success).

    """
    _require_tools("curl", "sh")
    install_k3s(cfg)
    print(f"k3s upgraded from channel '{cfg.channel}'.")
    return 0


def deploy_application(cfg: DeployConfig, *, now: dt.datetime | None = None) -> int:
    """Build docserver, ship its image and apply the manifests.

    Args:
        cfg: Deploy configuration.
        now: Timestamp used for the image tag (current time when omitted).

    Returns:
        Exit code (0 for success).

    Raises:
        ConfigError: If the manifest template is unusable or a
            build input directory is missing. Nothing has run.
        ExecutableNotFoundError: If a required tool is missing.
        CommandFailedError: If any build, transfer or apply command fails.

    """
    tools = ["cargo", "docker", "ssh"]
    if cfg.progress:
        tools.append("pv")
    _require_tools(*tools)
    template = read_manifest_template(cfg)
    check_build_inputs(cfg)

    log_info(logger, "Compiling release binary...")
    cargo_build_release(cfg)

    log_info(logger, "Staging build context...")
    stage_artifacts(cfg)

    image = image_reference(cfg.image_repo, now)
    log_info(logger, "Building image %s...", image)
    build_image(image, cfg.resolve(cfg.docker_dir))

    log_info(logger, "Importing image on %s...", cfg.remote.host)
    transfer_image(image, cfg.remote, progress=cfg.progress)

    log_info(logger, "Applying manifests...")
    apply_manifest(render_manifest(cfg, image, template), cfg.remote)

    if cfg.wait_for_rollout:
        log_info(logger, "Waiting for rollout of %s...", cfg.app_name)
        wait_for_rollout(cfg)

    _print_banner(
        "Deploy complete!",
        [
            f"  Image: {image}",
            f"  URL:   https://{cfg.public_hostname}/",
            "  Status: docdeploy status",
            "  Logs:   docdeploy logs --follow",
        ],
    )
    return 0


def show_remote_status(cfg: DeployConfig) -> int:
    """Print docserver pod status from the remote node."""
    _require_tools("ssh")
    print(f"Status for {cfg.app_name} on {cfg.remote.host}")
    print(f"Namespace: {cfg.namespace}")
    print()
    print_status(cfg)
    return 0


def stream_remote_logs(cfg: DeployConfig, *, follow: bool) -> int:
    """Print (or follow) docserver logs from the remote node."""
    _require_tools("ssh")
    tail_logs(cfg, follow=follow)
    return 0


def _print_banner(title: str, lines: list[str]) -> None:
    print()
    print("=" * 60)
    print(title)
    for line in lines:
        print(line)
    print("=" * 60)
