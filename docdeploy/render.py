"""Configuration documents written to the host or applied to the cluster.

All documents are built as plain dictionaries and serialized with ruamel.yaml,
so the rendered text depends only on the configuration passed in. Rendering
twice with the same inputs yields identical text, which keeps repeated
``kubectl apply`` runs pure reconciliation.

Public API:
    k3s_config_yaml: ``/etc/rancher/k3s/config.yaml`` contents.
    sysctl_override: ``/etc/sysctl.d/ports.conf`` contents.
    traefik_helm_chart_config: Traefik ``HelmChartConfig`` document.
    traefik_config_yaml: The same document serialized.
    deployment_manifests: Service, Deployment, IngressRoute and PVC documents.
    deployment_manifests_yaml: The manifest set as a ``---`` separated stream.
    substitute_image: Fill ``$IMAGE`` in a ``deploy.yaml``-style template.

"""

from __future__ import annotations

import io
import typing as typ

from ruamel.yaml import YAML
from ruamel.yaml.scalarstring import LiteralScalarString

if typ.TYPE_CHECKING:
    from docdeploy.config import ClusterConfig, DeployConfig

SYSCTL_KEY = "net.ipv4.ip_unprivileged_port_start"
IMAGE_PLACEHOLDER = "$IMAGE"
TRAEFIK_CRD_API = "traefik.io/v1alpha1"

_MANAGED_BY = "docdeploy"


def _yaml() -> YAML:
    serializer = YAML()
    serializer.default_flow_style = False
    serializer.indent(mapping=2, sequence=4, offset=2)
    return serializer


def dump_yaml(document: typ.Mapping[str, typ.Any]) -> str:
    """Serialize one mapping to block-style YAML."""
    with io.StringIO() as stream:
        _yaml().dump(dict(document), stream)
        return stream.getvalue()


def dump_yaml_stream(documents: typ.Iterable[typ.Mapping[str, typ.Any]]) -> str:
    """Serialize several mappings as one ``---`` separated stream."""
    serializer = _yaml()
    serializer.explicit_start = True
    with io.StringIO() as stream:
        serializer.dump_all([dict(doc) for doc in documents], stream)
        return stream.getvalue()


# =============================================================================
# Cluster bootstrap documents
# =============================================================================


def k3s_config_yaml(cfg: ClusterConfig) -> str:
    """Render the k3s server config disabling the unwanted bundled components."""
    return dump_yaml({"disable": ",".join(cfg.disabled_components)})


def sysctl_override() -> str:
    """Return the sysctl override letting unprivileged processes bind any port.

    The file always holds exactly this one line.
    """
    return f"{SYSCTL_KEY}=0\n"


def _traefik_arguments(cfg: ClusterConfig, email: str) -> list[str]:
    resolver = f"--certificatesResolvers.{cfg.resolver_name}.acme"
    return [
        f"{resolver}.email={email}",
        f"{resolver}.storage=/data/acme.json",
        f"{resolver}.caserver={cfg.acme_server}",
        f"{resolver}.tlschallenge=true",
        f"--entrypoints.websecure.http.tls.certResolver={cfg.resolver_name}",
        "--entrypoints.web.http.redirections.entrypoint.to=websecure",
        "--entrypoints.web.http.redirections.entrypoint.scheme=https",
        f"--log.level={cfg.traefik_log_level}",
        f"--accesslog={str(cfg.access_log).lower()}",
    ]


def traefik_ports(cfg: ClusterConfig) -> dict[str, dict[str, typ.Any]]:
    """Return Traefik entrypoint bindings, DNS first when enabled."""
    ports: dict[str, dict[str, typ.Any]] = {}
    if cfg.dns_ports:
        ports["dns-udp"] = {"port": 53, "protocol": "UDP"}
        ports["dns-tcp"] = {"port": 53}
    ports["web"] = {"port": 80}
    ports["websecure"] = {"port": 443}
    return ports


def traefik_values(cfg: ClusterConfig) -> dict[str, typ.Any]:
    """Return the Traefik Helm values overlay.

    Raises
    ------
    ConfigError
        If no ACME contact email is configured.

    """
    email = cfg.require_acme_email()
    return {
        "additionalArguments": _traefik_arguments(cfg, email),
        "persistence": {
            "enabled": True,
            "accessMode": "ReadWriteOnce",
            "size": cfg.persistence_size,
            "storageClass": cfg.storage_class,
            "path": "/data",
            "annotations": {},
        },
        "service": {"enabled": False},
        "hostNetwork": True,
        "ports": traefik_ports(cfg),
    }


def traefik_helm_chart_config(cfg: ClusterConfig) -> dict[str, typ.Any]:
    """Build the ``HelmChartConfig`` k3s merges into its bundled Traefik chart."""
    values_text = dump_yaml(traefik_values(cfg)).rstrip("\n")
    return {
        "apiVersion": "helm.cattle.io/v1",
        "kind": "HelmChartConfig",
        "metadata": {"name": "traefik", "namespace": "kube-system"},
        "spec": {"valuesContent": LiteralScalarString(values_text)},
    }


def traefik_config_yaml(cfg: ClusterConfig) -> str:
    """Serialize :func:`traefik_helm_chart_config`."""
    return dump_yaml(traefik_helm_chart_config(cfg))


# =============================================================================
# Application manifests
# =============================================================================


def _labels(cfg: DeployConfig) -> dict[str, str]:
    return {
        "app.kubernetes.io/managed-by": _MANAGED_BY,
        "app.kubernetes.io/name": cfg.app_name,
    }


def _selector(cfg: DeployConfig) -> dict[str, str]:
    return {"app.kubernetes.io/name": cfg.app_name}


def _metadata(cfg: DeployConfig, name: str) -> dict[str, typ.Any]:
    return {"name": name, "namespace": cfg.namespace, "labels": _labels(cfg)}


def service_manifest(cfg: DeployConfig) -> dict[str, typ.Any]:
    """ClusterIP Service in front of the docserver pod."""
    return {
        "apiVersion": "v1",
        "kind": "Service",
        "metadata": _metadata(cfg, cfg.app_name),
        "spec": {
            "selector": _selector(cfg),
            "ports": [
                {
                    "name": "http",
                    "port": 80,
                    "targetPort": cfg.container_port,
                    "protocol": "TCP",
                }
            ],
        },
    }


def deployment_manifest(cfg: DeployConfig, image: str) -> dict[str, typ.Any]:
    """Single-replica Deployment running ``image`` with the data volume."""
    container = {
        "name": cfg.app_name,
        "image": image,
        "imagePullPolicy": "Never",
        "env": [
            {"name": "STATIC_PATH", "value": cfg.static_path},
            {"name": "CRATES_PATH", "value": cfg.crates_path},
        ],
        "ports": [{"name": "http", "containerPort": cfg.container_port}],
        "volumeMounts": [{"name": "data", "mountPath": cfg.data_mount_path}],
    }
    return {
        "apiVersion": "apps/v1",
        "kind": "Deployment",
        "metadata": _metadata(cfg, cfg.app_name),
        "spec": {
            "replicas": 1,
            # ReadWriteOnce volume: the old pod must release it first.
            "strategy": {"type": "Recreate"},
            "selector": {"matchLabels": _selector(cfg)},
            "template": {
                "metadata": {"labels": _labels(cfg)},
                "spec": {
                    "containers": [container],
                    "volumes": [
                        {
                            "name": "data",
                            "persistentVolumeClaim": {
                                "claimName": cfg.data_claim_name
                            },
                        }
                    ],
                },
            },
        },
    }


def ingress_route_manifest(cfg: DeployConfig) -> dict[str, typ.Any]:
    """Traefik IngressRoute serving the public hostname over TLS."""
    return {
        "apiVersion": TRAEFIK_CRD_API,
        "kind": "IngressRoute",
        "metadata": _metadata(cfg, cfg.app_name),
        "spec": {
            "entryPoints": ["websecure"],
            "routes": [
                {
                    "match": f"Host(`{cfg.public_hostname}`)",
                    "kind": "Rule",
                    "services": [{"name": cfg.app_name, "port": 80}],
                }
            ],
            "tls": {"certResolver": cfg.resolver_name},
        },
    }


def data_claim_manifest(cfg: DeployConfig) -> dict[str, typ.Any]:
    """PersistentVolumeClaim for the docserver data directory."""
    return {
        "apiVersion": "v1",
        "kind": "PersistentVolumeClaim",
        "metadata": _metadata(cfg, cfg.data_claim_name),
        "spec": {
            "accessModes": ["ReadWriteOnce"],
            "storageClassName": cfg.storage_class,
            "resources": {"requests": {"storage": cfg.data_size}},
        },
    }


def deployment_manifests(cfg: DeployConfig, image: str) -> list[dict[str, typ.Any]]:
    """Return the full manifest set for ``image``."""
    return [
        service_manifest(cfg),
        deployment_manifest(cfg, image),
        ingress_route_manifest(cfg),
        data_claim_manifest(cfg),
    ]


def deployment_manifests_yaml(cfg: DeployConfig, image: str) -> str:
    """Serialize :func:`deployment_manifests` as a multi-document stream."""
    return dump_yaml_stream(deployment_manifests(cfg, image))


def substitute_image(template: str, image: str) -> str:
    """Replace every literal ``$IMAGE`` in ``template`` with ``image``.

    Raises
    ------
    ValueError
        If the template has no ``$IMAGE`` placeholder, which would deploy a
        stale image.

    """
    if IMAGE_PLACEHOLDER not in template:
        msg = f"manifest template does not contain {IMAGE_PLACEHOLDER}"
        raise ValueError(msg)
    return template.replace(IMAGE_PLACEHOLDER, image)
