"""Configuration for the cluster bootstrap and application deploy workflows.

Defaults reproduce the single-node docs host: k3s from the ``latest`` channel
with Traefik terminating TLS via Let's Encrypt, and the docserver image pushed
to ``root@docs.embassy.dev``.
"""

from __future__ import annotations

import dataclasses
from pathlib import Path

from docdeploy.errors import ConfigError

LETSENCRYPT_PRODUCTION = "https://acme-v02.api.letsencrypt.org/directory"

# Timeout bounds for waits on the remote cluster (in seconds).
MIN_WAIT_TIMEOUT = 1
MAX_WAIT_TIMEOUT = 3600


def validate_timeout(timeout: int) -> None:
    """Reject wait timeouts outside 1..3600 seconds.

    Raises
    ------
    ValueError
        If timeout is outside the valid range.

    """
    if not MIN_WAIT_TIMEOUT <= timeout <= MAX_WAIT_TIMEOUT:
        msg = (
            f"timeout must be between {MIN_WAIT_TIMEOUT} and "
            f"{MAX_WAIT_TIMEOUT} seconds, got {timeout}"
        )
        raise ValueError(msg)


@dataclasses.dataclass(frozen=True, slots=True)
class ClusterConfig:
    """Configuration for bootstrapping k3s on the local host.

    Attributes:
        channel: k3s release channel passed as ``INSTALL_K3S_CHANNEL``.
            Rerunning the installer with the same channel upgrades to that
            channel's newest release.
        acme_email: Contact address registered with the ACME server. Required
            to render the Traefik overlay.
        dns_ports: Also bind Traefik to port 53 over UDP and TCP.
        reload_sysctl: Run ``sysctl -p`` on the override after writing it so
            the privileged-port change applies without a reboot.

    """

    channel: str = "latest"
    install_url: str = "https://get.k3s.io"
    disabled_components: tuple[str, ...] = ("servicelb", "metrics-server")
    k3s_config_path: Path = dataclasses.field(
        default_factory=lambda: Path("/etc/rancher/k3s/config.yaml")
    )
    sysctl_path: Path = dataclasses.field(
        default_factory=lambda: Path("/etc/sysctl.d/ports.conf")
    )
    traefik_config_path: Path = dataclasses.field(
        default_factory=lambda: Path(
            "/var/lib/rancher/k3s/server/manifests/traefik-config.yaml"
        )
    )
    acme_email: str | None = None
    acme_server: str = LETSENCRYPT_PRODUCTION
    resolver_name: str = "letsencrypt"
    dns_ports: bool = True
    persistence_size: str = "128Mi"
    storage_class: str = "local-path"
    traefik_log_level: str = "DEBUG"
    access_log: bool = True
    reload_sysctl: bool = True

    def require_acme_email(self) -> str:
        """Return the ACME contact address or fail before any side effect.

        Raises
        ------
        ConfigError
            If no address is configured.

        """
        if not self.acme_email or not self.acme_email.strip():
            msg = (
                "An ACME contact email is required; pass --acme-email or set "
                "DOCDEPLOY_ACME_EMAIL"
            )
            raise ConfigError(msg)
        return self.acme_email.strip()


@dataclasses.dataclass(frozen=True, slots=True)
class RemoteHost:
    """SSH destination running the k3s node that serves the docs."""

    host: str = "docs.embassy.dev"
    user: str = "root"

    @property
    def destination(self) -> str:
        """``user@host`` as passed to ssh."""
        return f"{self.user}@{self.host}"


@dataclasses.dataclass(frozen=True, slots=True)
class DeployConfig:
    """Configuration for building and deploying docserver.

    Relative paths resolve against ``project_dir``, the docserver checkout.

    Attributes:
        hostname: Public hostname routed by the IngressRoute. Defaults to the
            remote host name.
        manifest_template: Optional ``deploy.yaml``-style template. Every
            literal ``$IMAGE`` in it is replaced with the new image reference.
            When unset, the built-in manifest set is rendered.
        progress: Pipe the image stream through ``pv``.
        wait_for_rollout: Block on ``kubectl rollout status`` after applying.

    """

    remote: RemoteHost = dataclasses.field(default_factory=RemoteHost)
    project_dir: Path = dataclasses.field(default_factory=lambda: Path())
    target: str = "x86_64-unknown-linux-musl"
    binary_name: str = "server"
    docker_dir: Path = dataclasses.field(default_factory=lambda: Path("docker"))
    templates_dir: Path = dataclasses.field(default_factory=lambda: Path("templates"))
    image_repo: str = "embassy.dev/docserver"
    app_name: str = "docserver"
    namespace: str = "default"
    hostname: str | None = None
    container_port: int = 3000
    static_path: str = "/data/static"
    crates_path: str = "/data/crates"
    data_mount_path: str = "/data"
    data_size: str = "128Mi"
    storage_class: str = "local-path"
    resolver_name: str = "letsencrypt"
    manifest_template: Path | None = None
    progress: bool = True
    wait_for_rollout: bool = False
    rollout_timeout: int = 300

    def __post_init__(self) -> None:
        """Validate values that would otherwise fail deep inside a workflow."""
        if not 1 <= self.container_port <= 65535:
            msg = f"container_port must be between 1 and 65535, got {self.container_port}"
            raise ConfigError(msg)
        if not self.image_repo or ":" in self.image_repo.rsplit("/", 1)[-1]:
            msg = f"image_repo must be a repository without a tag, got {self.image_repo!r}"
            raise ConfigError(msg)
        try:
            validate_timeout(self.rollout_timeout)
        except ValueError as e:
            msg = f"rollout_timeout: {e}"
            raise ConfigError(msg) from e

    @property
    def public_hostname(self) -> str:
        """Hostname served by the ingress route."""
        return self.hostname or self.remote.host

    @property
    def data_claim_name(self) -> str:
        """Name of the PersistentVolumeClaim holding the docserver data."""
        return f"{self.app_name}-data"

    def resolve(self, path: Path) -> Path:
        """Resolve ``path`` against the project directory."""
        return path if path.is_absolute() else self.project_dir / path

    @property
    def staging_dir(self) -> Path:
        """Root filesystem staged for the image build (``docker/rootfs``)."""
        return self.resolve(self.docker_dir) / "rootfs"

    @property
    def binary_path(self) -> Path:
        """Release binary produced by cargo for the configured target."""
        return (
            self.project_dir / "target" / self.target / "release" / self.binary_name
        )
