"""
Manifest builders for the long-lived application resources and the build sandbox Job.
"""
import base64
import json
import re
from pathlib import Path
from typing import Any, Dict, Optional

import yaml
from kubernetes import client

MANAGED_BY = "launchpad-backend"
REGISTRY_SECRET_NAME = "registry-credentials"
BUILDER_CONTAINER = "builder"
DEFAULT_BUILD_JOB_TEMPLATE = Path(__file__).resolve().parents[2] / "templates" / "build-job.yaml"

_DNS_LABEL_INVALID = re.compile(r"[^a-z0-9-]+")


def sanitize_name(value: str, max_length: int = 63) -> str:
    """Lowercase DNS-1123 label: a-z, 0-9 and '-', starting and ending alphanumeric."""
    name = _DNS_LABEL_INVALID.sub("-", value.lower()).strip("-")
    name = re.sub(r"-{2,}", "-", name)[:max_length].rstrip("-")
    return name or "app"


def _labels(app_name: Optional[str] = None, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    labels = {"app.kubernetes.io/managed-by": MANAGED_BY}
    if app_name:
        labels["app"] = app_name
    if extra:
        labels.update(extra)
    return labels


def namespace_manifest(name: str, labels: Optional[Dict[str, str]] = None) -> client.V1Namespace:
    return client.V1Namespace(
        api_version="v1",
        kind="Namespace",
        metadata=client.V1ObjectMeta(name=name, labels=_labels(extra=labels)),
    )


def registry_secret_manifest(registry_url: str, username: str, password: str,
                             name: str = REGISTRY_SECRET_NAME) -> client.V1Secret:
    """dockerconfigjson secret with basic-auth credentials for the registry."""
    auth = base64.b64encode(f"{username}:{password}".encode()).decode()
    docker_config = {
        "auths": {
            registry_url: {"username": username, "password": password, "auth": auth}
        }
    }
    return client.V1Secret(
        api_version="v1",
        kind="Secret",
        metadata=client.V1ObjectMeta(name=name, labels=_labels()),
        type="kubernetes.io/dockerconfigjson",
        string_data={".dockerconfigjson": json.dumps(docker_config)},
    )


def deployment_manifest(app_name: str, image_uri: str, port: int) -> client.V1Deployment:
    container = client.V1Container(
        name=app_name,
        image=image_uri,
        ports=[client.V1ContainerPort(name="http", container_port=port)],
        resources=client.V1ResourceRequirements(
            requests={"cpu": "50m", "memory": "64Mi"},
            limits={"cpu": "500m", "memory": "256Mi"},
        ),
        security_context=client.V1SecurityContext(
            run_as_non_root=True,
            allow_privilege_escalation=False,
            capabilities=client.V1Capabilities(drop=["ALL"]),
        ),
    )
    return client.V1Deployment(
        api_version="apps/v1",
        kind="Deployment",
        metadata=client.V1ObjectMeta(name=app_name, labels=_labels(app_name)),
        spec=client.V1DeploymentSpec(
            replicas=1,
            selector=client.V1LabelSelector(match_labels={"app": app_name}),
            template=client.V1PodTemplateSpec(
                metadata=client.V1ObjectMeta(labels=_labels(app_name)),
                spec=client.V1PodSpec(
                    containers=[container],
                    security_context=client.V1PodSecurityContext(run_as_non_root=True),
                ),
            ),
        ),
    )


def service_manifest(app_name: str, port: int) -> client.V1Service:
    return client.V1Service(
        api_version="v1",
        kind="Service",
        metadata=client.V1ObjectMeta(name=app_name, labels=_labels(app_name)),
        spec=client.V1ServiceSpec(
            type="ClusterIP",
            selector={"app": app_name},
            ports=[client.V1ServicePort(name="http", port=80, target_port=port)],
        ),
    )


def ingress_manifest(app_name: str, host: str, ingress_class: str, cluster_issuer: str) -> client.V1Ingress:
    return client.V1Ingress(
        api_version="networking.k8s.io/v1",
        kind="Ingress",
        metadata=client.V1ObjectMeta(
            name=app_name,
            labels=_labels(app_name),
            annotations={
                "kubernetes.io/ingress.class": ingress_class,
                "cert-manager.io/cluster-issuer": cluster_issuer,
            },
        ),
        spec=client.V1IngressSpec(
            tls=[client.V1IngressTLS(hosts=[host], secret_name=f"{app_name}-tls")],
            rules=[
                client.V1IngressRule(
                    host=host,
                    http=client.V1HTTPIngressRuleValue(
                        paths=[
                            client.V1HTTPIngressPath(
                                path="/",
                                path_type="Prefix",
                                backend=client.V1IngressBackend(
                                    service=client.V1IngressServiceBackend(
                                        name=app_name,
                                        port=client.V1ServiceBackendPort(number=80),
                                    )
                                ),
                            )
                        ]
                    ),
                )
            ],
        ),
    )


def load_build_job_template(path: Optional[str] = None) -> str:
    return Path(path or DEFAULT_BUILD_JOB_TEMPLATE).read_text()


def _yaml_escape(value: str) -> str:
    # Placeholders sit inside double-quoted YAML scalars
    return value.replace("\\", "\\\\").replace('"', '\\"')


def render_build_job(
    template: str,
    build_id: str,
    builder_image: str,
    target_image: str,
    branch: str,
    clone_url: str,
    dockerfile: Optional[str] = None,
) -> Dict[str, Any]:
    """Substitute the literal placeholders, parse, and force apiVersion/kind."""
    substitutions = {
        "{{BUILD_ID}}": build_id,
        "{{BUILDER_IMAGE}}": builder_image,
        "{{TARGET_IMAGE}}": target_image,
        "{{GIT_BRANCH}}": branch,
        "{{GIT_CLONE_URL}}": clone_url,
        "{{DOCKERFILE}}": dockerfile or "Dockerfile",
    }
    rendered = template
    for placeholder, value in substitutions.items():
        rendered = rendered.replace(placeholder, _yaml_escape(value))

    manifest = yaml.safe_load(rendered)
    if not isinstance(manifest, dict):
        raise ValueError("Build job template did not render to a mapping")
    manifest["apiVersion"] = "batch/v1"
    manifest["kind"] = "Job"
    return manifest
