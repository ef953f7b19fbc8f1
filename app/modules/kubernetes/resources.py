"""
Per-kind read/create/replace/delete capabilities over the Kubernetes API.

Every kind the control plane manages implements the same small interface so that
ClusterResourceManager.apply() can be written once and selected by tag.
"""
from enum import Enum
from typing import Any, Dict, Optional

from kubernetes import client


class ResourceKindTag(str, Enum):
    NAMESPACE = "Namespace"
    DEPLOYMENT = "Deployment"
    SERVICE = "Service"
    INGRESS = "Ingress"
    SECRET = "Secret"
    JOB = "Job"


class ResourceKind:
    tag: ResourceKindTag
    namespaced: bool = True

    def __init__(self, api):
        self.api = api

    def read(self, name: str, namespace: Optional[str] = None) -> Any:
        raise NotImplementedError

    def create(self, body: Any, namespace: Optional[str] = None) -> Any:
        raise NotImplementedError

    def replace(self, name: str, body: Any, namespace: Optional[str] = None) -> Any:
        raise NotImplementedError

    def delete(self, name: str, namespace: Optional[str] = None) -> Any:
        raise NotImplementedError


class NamespaceKind(ResourceKind):
    tag = ResourceKindTag.NAMESPACE
    namespaced = False

    def read(self, name, namespace=None):
        return self.api.read_namespace(name=name)

    def create(self, body, namespace=None):
        return self.api.create_namespace(body=body)

    def replace(self, name, body, namespace=None):
        return self.api.replace_namespace(name=name, body=body)

    def delete(self, name, namespace=None):
        return self.api.delete_namespace(name=name)


class DeploymentKind(ResourceKind):
    tag = ResourceKindTag.DEPLOYMENT

    def read(self, name, namespace=None):
        return self.api.read_namespaced_deployment(name=name, namespace=namespace)

    def create(self, body, namespace=None):
        return self.api.create_namespaced_deployment(namespace=namespace, body=body)

    def replace(self, name, body, namespace=None):
        return self.api.replace_namespaced_deployment(name=name, namespace=namespace, body=body)

    def delete(self, name, namespace=None):
        return self.api.delete_namespaced_deployment(name=name, namespace=namespace)


class ServiceKind(ResourceKind):
    tag = ResourceKindTag.SERVICE

    def read(self, name, namespace=None):
        return self.api.read_namespaced_service(name=name, namespace=namespace)

    def create(self, body, namespace=None):
        return self.api.create_namespaced_service(namespace=namespace, body=body)

    def replace(self, name, body, namespace=None):
        return self.api.replace_namespaced_service(name=name, namespace=namespace, body=body)

    def delete(self, name, namespace=None):
        return self.api.delete_namespaced_service(name=name, namespace=namespace)


class IngressKind(ResourceKind):
    tag = ResourceKindTag.INGRESS

    def read(self, name, namespace=None):
        return self.api.read_namespaced_ingress(name=name, namespace=namespace)

    def create(self, body, namespace=None):
        return self.api.create_namespaced_ingress(namespace=namespace, body=body)

    def replace(self, name, body, namespace=None):
        return self.api.replace_namespaced_ingress(name=name, namespace=namespace, body=body)

    def delete(self, name, namespace=None):
        return self.api.delete_namespaced_ingress(name=name, namespace=namespace)


class SecretKind(ResourceKind):
    tag = ResourceKindTag.SECRET

    def read(self, name, namespace=None):
        return self.api.read_namespaced_secret(name=name, namespace=namespace)

    def create(self, body, namespace=None):
        return self.api.create_namespaced_secret(namespace=namespace, body=body)

    def replace(self, name, body, namespace=None):
        return self.api.replace_namespaced_secret(name=name, namespace=namespace, body=body)

    def delete(self, name, namespace=None):
        return self.api.delete_namespaced_secret(name=name, namespace=namespace)


class JobKind(ResourceKind):
    tag = ResourceKindTag.JOB

    def read(self, name, namespace=None):
        return self.api.read_namespaced_job(name=name, namespace=namespace)

    def create(self, body, namespace=None):
        return self.api.create_namespaced_job(namespace=namespace, body=body)

    def replace(self, name, body, namespace=None):
        return self.api.replace_namespaced_job(name=name, namespace=namespace, body=body)

    def delete(self, name, namespace=None):
        # Background propagation so the Job's pods go with it
        return self.api.delete_namespaced_job(
            name=name,
            namespace=namespace,
            body=client.V1DeleteOptions(propagation_policy="Background"),
        )


def build_resource_kinds(core_v1, apps_v1, networking_v1, batch_v1) -> Dict[ResourceKindTag, ResourceKind]:
    return {
        ResourceKindTag.NAMESPACE: NamespaceKind(core_v1),
        ResourceKindTag.DEPLOYMENT: DeploymentKind(apps_v1),
        ResourceKindTag.SERVICE: ServiceKind(core_v1),
        ResourceKindTag.INGRESS: IngressKind(networking_v1),
        ResourceKindTag.SECRET: SecretKind(core_v1),
        ResourceKindTag.JOB: JobKind(batch_v1),
    }
