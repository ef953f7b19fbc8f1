"""
Deploy Orchestrator

Consumes a DeployJobMessage: applies the long-lived application resources in the
owner's namespace and waits for the rollout to become healthy.
"""
import logging
from urllib.parse import urlparse

from app.config.settings import Settings, settings as default_settings
from app.core.exceptions import RecordNotFoundError, is_retryable
from app.modules.builds.service import BuildService
from app.modules.deployments import schemas as deployment_status
from app.modules.deployments.schemas import DeployJobMessage, DeploymentResponse
from app.modules.deployments.service import DeploymentService
from app.modules.kubernetes import manifests
from app.modules.kubernetes.manager import ClusterResourceManager
from app.modules.logs.relay import LogPublisher

logger = logging.getLogger(__name__)

# Deployments in these states still have deploy work to do
DEPLOYABLE_STATUSES = (deployment_status.BUILDING, deployment_status.DEPLOYING)


def namespace_for_user(user_id: str) -> str:
    """Stable per owner, so redeploys reuse the same namespace."""
    return f"user-{user_id[:8].lower()}"


def app_name_for(project: str, deployment_id: str) -> str:
    """Unique per Deployment record: two records of the same repo never share cluster resources."""
    base = manifests.sanitize_name(project.split("/")[-1], max_length=31)
    suffix = manifests.sanitize_name(deployment_id[:8], max_length=8)
    return manifests.sanitize_name(f"{base}-{suffix}", max_length=40)


def deployment_url(config: Settings, app_name: str, namespace: str) -> str:
    scheme = config.deployment_url_scheme
    host = f"{app_name}-{namespace}.{config.base_domain}"
    default_port = {"http": 80, "https": 443}.get(scheme)
    if config.deployment_port and config.deployment_port != default_port:
        return f"{scheme}://{host}:{config.deployment_port}"
    return f"{scheme}://{host}"


class DeployOrchestrator:
    def __init__(
        self,
        build_service: BuildService,
        deployment_service: DeploymentService,
        cluster: ClusterResourceManager,
        publisher: LogPublisher,
        config: Settings = default_settings,
    ):
        self.builds = build_service
        self.deployments = deployment_service
        self.cluster = cluster
        self.publisher = publisher
        self.config = config

    def run(self, message: DeployJobMessage, final_attempt: bool = True) -> str:
        """Roll out `message.image_uri`. Returns the public URL."""
        build_id = message.build_id
        logger.info(f"Starting deployment for build {build_id} with image {message.image_uri}")

        _, deployment = self.builds.get_build_with_deployment(build_id)
        if deployment is None:
            raise RecordNotFoundError(f"No deployment linked to build {build_id}")
        if deployment.status not in DEPLOYABLE_STATUSES:
            logger.info(f"[{deployment.id}] Deployment already {deployment.status}; ignoring redelivered job")
            return deployment.url

        namespace = namespace_for_user(deployment.user_id)
        app_name = app_name_for(deployment.project, deployment.id)
        url = deployment_url(self.config, app_name, namespace)

        try:
            self.deployments.update_deployment_status(
                deployment.id, deployment_status.DEPLOYING, namespace=namespace
            )
            self.publisher.publish_log(deployment.id, f"Deploying {message.image_uri} to {namespace}...")

            self.cluster.apply_namespace(namespace, labels={"launchpad.dev/user-id": deployment.user_id})
            self.cluster.apply_deployment(namespace, app_name, message.image_uri, message.port)
            self.cluster.apply_service(namespace, app_name, message.port)
            self.cluster.apply_ingress(
                namespace, app_name, urlparse(url).hostname,
                self.config.ingress_class, self.config.cluster_issuer,
            )
            self.cluster.wait_for_rollout(
                namespace, app_name,
                self.config.rollout_timeout_seconds, self.config.rollout_poll_interval_seconds,
            )

            self.deployments.update_deployment_status(deployment.id, deployment_status.RUNNING, url=url)
        except Exception as e:
            self._record_failure(deployment, namespace, app_name, e, final_attempt)
            raise

        self.publisher.publish_done(deployment.id, url)
        logger.info(f"Deployment successful for build {build_id}. Application is live at {url}")
        return url

    def _record_failure(self, deployment: DeploymentResponse, namespace: str, app_name: str,
                        error: Exception, final_attempt: bool) -> None:
        diagnostic = f"{type(error).__name__}: {error}"

        if is_retryable(error) and not final_attempt:
            logger.warning(f"[{deployment.id}] Deploy attempt failed, queue will retry: {diagnostic}")
            return

        logger.error(f"[{deployment.id}] Deployment failed: {diagnostic}")
        self.publisher.publish_log(deployment.id, f"Deployment failed: {error}")
        try:
            self.deployments.update_deployment_status(
                deployment.id, deployment_status.DEPLOY_FAILED, error_message=diagnostic
            )
        except Exception as status_err:
            logger.error(f"[{deployment.id}] Failed to set deployment status to deploy_failed: {status_err}")

        # The namespace is shared by the owner's other apps; only this app's resources go
        self.cluster.delete_app_resources(namespace, app_name)
