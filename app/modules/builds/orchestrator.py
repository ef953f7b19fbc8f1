"""
Build Orchestrator

Consumes a BuildJobMessage: drives a disposable build sandbox (one ephemeral namespace
per build) to produce and publish an image, then hands over to the deploy queue.
"""
import logging
import secrets
from contextlib import contextmanager
from typing import Callable, Iterator, Optional

from app.config.settings import Settings, settings as default_settings
from app.core.exceptions import BuildJobFailed, is_retryable
from app.modules.builds import schemas as build_status
from app.modules.builds.schemas import BuildJobMessage
from app.modules.builds.service import BuildService
from app.modules.deployments import schemas as deployment_status
from app.modules.deployments.schemas import DeployJobMessage
from app.modules.deployments.service import DeploymentService
from app.modules.github.service import GithubService
from app.modules.kubernetes import manifests
from app.modules.kubernetes.manager import ClusterResourceManager, LogFollower
from app.modules.logs.relay import LogPublisher

logger = logging.getLogger(__name__)


def ephemeral_namespace_name(build_id: str) -> str:
    """Unique per attempt, so concurrent or retried builds never share a sandbox."""
    prefix = manifests.sanitize_name(build_id)[:8]
    return f"build-{prefix}-{secrets.token_hex(4)}"


def target_image_for(config: Settings, repo_name: str, tag: str) -> str:
    repo_short = manifests.sanitize_name(repo_name.split("/")[-1])
    return f"{config.registry_url}/{config.registry_user}/{repo_short}:{tag}"


class BuildOrchestrator:
    def __init__(
        self,
        build_service: BuildService,
        deployment_service: DeploymentService,
        github_service: GithubService,
        cluster: ClusterResourceManager,
        publisher: LogPublisher,
        enqueue_deploy: Callable[[DeployJobMessage], None],
        config: Settings = default_settings,
    ):
        self.builds = build_service
        self.deployments = deployment_service
        self.github = github_service
        self.cluster = cluster
        self.publisher = publisher
        self.enqueue_deploy = enqueue_deploy
        self.config = config

    def run(self, message: BuildJobMessage, final_attempt: bool = True) -> Optional[str]:
        """Run one build. Returns the pushed image URI.

        On failure the error is recorded and re-raised so the queue sees it. A retryable
        failure on a non-final attempt keeps the build in 'building' for the retry.
        """
        build_id = message.build_id
        build = self.builds.get_build_by_id(build_id)
        if build.status in build_status.TERMINAL_STATUSES:
            logger.info(f"[{build_id}] Build already {build.status}; ignoring redelivered job")
            return build.image_uri

        try:
            self.builds.update_build_status(build_id, build_status.BUILDING)
            self.deployments.update_deployment_status(message.deployment_id, deployment_status.BUILDING)

            # Credential first: a failure here leaves nothing behind in the cluster
            token = self.github.get_installation_token(message.installation_id)
            tag = self.github.get_branch_head_sha(token, message.repo_name, message.branch) or build_id
            target_image = target_image_for(self.config, message.repo_name, tag)

            with self._ephemeral_namespace(build_id) as namespace:
                self._build_in_sandbox(message, namespace, token, target_image)

            self.builds.update_build_status(build_id, build_status.SUCCESS, image_uri=target_image)
            self.enqueue_deploy(DeployJobMessage(build_id=build_id, image_uri=target_image, port=message.port))
            logger.info(f"[{build_id}] Build successful, image {target_image} handed to deploy queue")
            return target_image
        except Exception as e:
            self._record_failure(message, e, final_attempt)
            raise

    @contextmanager
    def _ephemeral_namespace(self, build_id: str) -> Iterator[str]:
        namespace = ephemeral_namespace_name(build_id)
        try:
            yield namespace
        finally:
            logger.info(f"[{build_id}] Cleaning up namespace {namespace}...")
            self.cluster.delete_namespace(namespace)

    def _build_in_sandbox(self, message: BuildJobMessage, namespace: str, token: str, target_image: str) -> None:
        build_id = message.build_id
        config = self.config

        self.cluster.apply_namespace(namespace, labels={"launchpad.dev/build-id": build_id})
        self.cluster.apply_secret(
            namespace,
            manifests.registry_secret_manifest(config.registry_url, config.registry_user, config.registry_password),
        )

        job = manifests.render_build_job(
            manifests.load_build_job_template(config.build_job_template_path),
            build_id=build_id,
            builder_image=config.builder_image,
            target_image=target_image,
            branch=message.branch,
            clone_url=self.github.clone_url(token, message.repo_name),
            dockerfile=message.dockerfile_path,
        )
        job_name = job["metadata"]["name"]
        self.cluster.create_job(namespace, job)
        logger.info(f"[{build_id}] Building {message.repo_name}@{message.branch} as {target_image}")

        pod_name = self.cluster.wait_for_job_pod(
            namespace, job_name, config.pod_schedule_retries, config.pod_poll_interval_seconds
        )
        self.cluster.wait_for_pod_started(
            namespace, pod_name, manifests.BUILDER_CONTAINER,
            config.pod_ready_timeout_seconds, config.pod_poll_interval_seconds,
        )

        follower = self._start_log_follow(namespace, pod_name, message.deployment_id)
        try:
            outcome = self.cluster.wait_for_job_completion(
                namespace, job_name, pod_name, manifests.BUILDER_CONTAINER,
                config.build_timeout_seconds, config.pod_poll_interval_seconds,
            )
        except Exception:
            if follower is not None:
                follower.stop()
            raise

        if follower is not None:
            # Push and digest lines are the last ones the builder writes
            if outcome == "succeeded":
                follower.drain(config.log_drain_timeout_seconds)
            else:
                follower.stop()

        if outcome != "succeeded":
            raise BuildJobFailed(
                f"Build job {job_name} failed",
                self.cluster.pod_diagnostics(namespace, pod_name, manifests.BUILDER_CONTAINER),
            )

    def _start_log_follow(self, namespace: str, pod_name: str, deployment_id: str) -> Optional[LogFollower]:
        try:
            return self.cluster.follow_pod_logs(
                namespace, pod_name, manifests.BUILDER_CONTAINER,
                lambda line: self.publisher.publish_log(deployment_id, line),
            )
        except Exception as e:
            logger.error(f"[{deployment_id}] Could not start log follow for {pod_name}: {e}")
            return None

    def _record_failure(self, message: BuildJobMessage, error: Exception, final_attempt: bool) -> None:
        build_id = message.build_id
        diagnostic = f"{type(error).__name__}: {error}"

        if is_retryable(error) and not final_attempt:
            logger.warning(f"[{build_id}] Build attempt failed, queue will retry: {diagnostic}")
            try:
                self.builds.append_build_logs(build_id, f"Attempt failed, retrying: {diagnostic}")
            except Exception as log_err:
                logger.error(f"[{build_id}] Could not record attempt diagnostics: {log_err}")
            return

        logger.error(f"[{build_id}] Build failed: {diagnostic}")
        self.publisher.publish_log(message.deployment_id, f"Build failed: {error}")
        try:
            self.builds.update_build_status(build_id, build_status.FAILED, logs=diagnostic)
        except Exception as status_err:
            logger.error(f"[{build_id}] Failed to set build status to failed: {status_err}")
        try:
            self.deployments.update_deployment_status(
                message.deployment_id, deployment_status.FAILED, error_message=diagnostic
            )
        except Exception as status_err:
            logger.error(f"[{build_id}] Failed to set deployment {message.deployment_id} to failed: {status_err}")
