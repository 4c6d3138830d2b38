"""Bootstrap a single-node k3s host and deploy docserver to it.

The primary entrypoints are:

- bootstrap_cluster: Install k3s and write the node and Traefik configuration
- upgrade_cluster: Rerun the k3s installer for the configured channel
- deploy_application: Build docserver, ship its image and apply the manifests
- show_remote_status: Display docserver pod status on the node
- stream_remote_logs: Print docserver logs from the node

For lower-level operations, import directly from submodules:

- docdeploy.cluster: k3s installer and node configuration files
- docdeploy.build: cargo build, staging directory and image build
- docdeploy.remote: ssh image transfer and kubectl operations
- docdeploy.render: YAML documents and manifest templating
- docdeploy.process: strict-mode command execution

"""

from __future__ import annotations

__version__ = "0.1.0"

from docdeploy.config import ClusterConfig, DeployConfig, RemoteHost
from docdeploy.errors import (
    CommandFailedError,
    CommandTimeoutError,
    ConfigError,
    ConfigWriteError,
    DocDeployError,
    ExecutableNotFoundError,
)
from docdeploy.orchestration import (
    bootstrap_cluster,
    deploy_application,
    show_remote_status,
    stream_remote_logs,
    upgrade_cluster,
)

__all__ = [
    "ClusterConfig",
    "CommandFailedError",
    "CommandTimeoutError",
    "ConfigError",
    "ConfigWriteError",
    "DeployConfig",
    "DocDeployError",
    "ExecutableNotFoundError",
    "RemoteHost",
    "__version__",
    "bootstrap_cluster",
    "deploy_application",
    "show_remote_status",
    "stream_remote_logs",
    "upgrade_cluster",
]
