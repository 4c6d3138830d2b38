"""k3s bootstrap on the local host.

This module installs (or upgrades) k3s and overwrites the three files that
shape the node: the k3s server config, the sysctl override for privileged
ports, and the Traefik ``HelmChartConfig`` overlay that k3s picks up from its
auto-deploy manifests directory.

Every writer replaces its file wholesale. Nothing is merged with what was
there before, so rerunning the bootstrap always converges on the same files.

Examples
--------
Bootstrap a node in the order the workflow uses:

    cfg = ClusterConfig(acme_email="ops@example.org")
    write_k3s_config(cfg)
    install_k3s(cfg)
    write_sysctl_override(cfg)
    write_traefik_config(cfg)

"""

from __future__ import annotations

import typing as typ

from docdeploy.errors import ConfigWriteError
from docdeploy.logging import get_logger, log_info
from docdeploy.process import command_env, run_command, run_pipeline
from docdeploy.render import k3s_config_yaml, sysctl_override, traefik_config_yaml

if typ.TYPE_CHECKING:
    from pathlib import Path

    from docdeploy.config import ClusterConfig

logger = get_logger(__name__)

# The installer downloads binaries and starts the service.
_INSTALL_TIMEOUT = 900
_SYSCTL_TIMEOUT = 30


def overwrite_file(path: Path, content: str) -> Path:
    """Replace ``path`` with ``content``, creating parent directories.

    Raises
    ------
    ConfigWriteError
        If the directory cannot be created or the file cannot be written.

    """
    log_info(logger, "Writing %s", path)
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    except OSError as e:
        msg = f"Failed to write {path}: {e}"
        raise ConfigWriteError(msg) from e
    return path


def write_k3s_config(cfg: ClusterConfig) -> Path:
    """Write the k3s config that disables the bundled components."""
    return overwrite_file(cfg.k3s_config_path, k3s_config_yaml(cfg))


def write_sysctl_override(cfg: ClusterConfig) -> Path:
    """Write the single-line privileged-port override."""
    return overwrite_file(cfg.sysctl_path, sysctl_override())


def write_traefik_config(cfg: ClusterConfig) -> Path:
    """Write the Traefik overlay into the k3s auto-deploy manifests directory.

    Raises
    ------
    ConfigError
        If no ACME contact email is configured. Raised before the file is
        touched.

    """
    content = traefik_config_yaml(cfg)
    return overwrite_file(cfg.traefik_config_path, content)


def install_k3s(cfg: ClusterConfig) -> None:
    """Run the upstream installer: ``curl -sfL <url> | sh -``.

    The installer reads the channel from ``INSTALL_K3S_CHANNEL``. Running it
    again on an installed node upgrades k3s to the newest release of that
    channel, so this is also the upgrade path.

    Raises
    ------
    CommandFailedError
        If the download or the installer fails.

    """
    env = command_env(INSTALL_K3S_CHANNEL=cfg.channel)
    log_info(logger, "Installing k3s from channel %s", cfg.channel)
    run_pipeline(
        [["curl", "-sfL", cfg.install_url], ["sh", "-"]],
        env=env,
        timeout=_INSTALL_TIMEOUT,
    )


def reload_sysctl(cfg: ClusterConfig) -> None:
    """Apply the override file to the running kernel."""
    run_command(["sysctl", "-p", str(cfg.sysctl_path)], timeout=_SYSCTL_TIMEOUT)
