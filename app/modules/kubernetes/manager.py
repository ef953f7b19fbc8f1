"""
Cluster Resource Manager

Idempotent apply/delete over the resource kinds in resources.py, bounded-timeout
polling helpers for the build and deploy pipelines, diagnostics collection and a
supervised, non-blocking pod log follow.
"""
import logging
import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from typing import Any, Callable, Dict, List, Optional

from kubernetes import client, config, watch
from kubernetes.client.rest import ApiException

from app.core.exceptions import JobNotTerminal, PodNotReady, PodNotScheduled, RolloutTimeout
from app.modules.kubernetes import manifests
from app.modules.kubernetes.resources import ResourceKindTag, build_resource_kinds

logger = logging.getLogger(__name__)

_config_loaded = False
_config_lock = threading.Lock()

# Shared by every LogFollower in the process; each follow is its own future
_log_follow_executor = ThreadPoolExecutor(max_workers=16, thread_name_prefix="log-follow")


def load_kube_config() -> None:
    """Load in-cluster config, falling back to the local kubeconfig."""
    global _config_loaded
    with _config_lock:
        if _config_loaded:
            return
        try:
            config.load_incluster_config()
            logger.info("Loaded in-cluster Kubernetes configuration")
        except config.ConfigException:
            try:
                config.load_kube_config()
                logger.info("Loaded kubeconfig from default local path")
            except config.ConfigException as e:
                logger.error(f"Failed to load Kubernetes config: {e}")
                raise RuntimeError("Cannot load Kubernetes configuration") from e
        _config_loaded = True


def is_not_found(error: Exception) -> bool:
    return isinstance(error, ApiException) and error.status == 404


def poll_until(
    check: Callable[[], Any],
    timeout: float,
    interval: float,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> Any:
    """Call check() every `interval` seconds until it returns something other than None.

    Returns None once `timeout` has elapsed without a result. Exceptions raised by
    check() propagate immediately.
    """
    deadline = clock() + timeout
    while True:
        result = check()
        if result is not None:
            return result
        if clock() >= deadline:
            return None
        sleep(interval)


def _manifest_name(manifest: Any) -> str:
    if isinstance(manifest, dict):
        return manifest["metadata"]["name"]
    return manifest.metadata.name


def _set_resource_version(manifest: Any, existing: Any) -> None:
    resource_version = getattr(getattr(existing, "metadata", None), "resource_version", None)
    if not resource_version:
        return
    if isinstance(manifest, dict):
        manifest.setdefault("metadata", {})["resourceVersion"] = resource_version
    elif manifest.metadata is not None:
        manifest.metadata.resource_version = resource_version


def _created_at(item: Any) -> float:
    ts = getattr(item.metadata, "creation_timestamp", None)
    return ts.timestamp() if ts else 0.0


def _event_time(event: Any) -> float:
    ts = event.last_timestamp or event.event_time or getattr(event.metadata, "creation_timestamp", None)
    return ts.timestamp() if ts else 0.0


class LogFollower:
    """Streams one container's output to a sink on a background thread.

    The follow is its own unit of work: failures are logged by the done-callback and
    exposed through `error`, but never raised to whoever started it.
    """

    def __init__(self, core_v1, namespace: str, pod_name: str, container: str,
                 sink: Callable[[str], None]):
        self.core_v1 = core_v1
        self.namespace = namespace
        self.pod_name = pod_name
        self.container = container
        self.sink = sink
        self.lines_forwarded = 0
        self.error: Optional[BaseException] = None
        self._stop = threading.Event()
        self._watch = watch.Watch()
        self.future: Optional[Future] = None

    def start(self) -> "LogFollower":
        self.future = _log_follow_executor.submit(self._run)
        self.future.add_done_callback(self._on_done)
        return self

    def stop(self) -> None:
        self._stop.set()
        self._watch.stop()

    def drain(self, timeout: float) -> bool:
        """Let the stream end on its own once the container exits, so the last buffered
        lines still reach the sink. Stops it if it is still open after `timeout`."""
        if self.future is None:
            return True
        done, _ = wait([self.future], timeout=timeout)
        if done:
            return True
        logger.warning(f"[{self.namespace}/{self.pod_name}] Log stream still open after {timeout}s; stopping")
        self.stop()
        return False

    def _run(self) -> None:
        for line in self._watch.stream(
            self.core_v1.read_namespaced_pod_log,
            name=self.pod_name,
            namespace=self.namespace,
            container=self.container,
            follow=True,
        ):
            if self._stop.is_set():
                break
            try:
                self.sink(line)
            except Exception as e:
                logger.warning(f"[{self.namespace}/{self.pod_name}] Log sink error: {e}")
            self.lines_forwarded += 1

    def _on_done(self, future: Future) -> None:
        error = future.exception()
        if error is not None and not self._stop.is_set():
            self.error = error
            logger.error(f"[{self.namespace}/{self.pod_name}] Log follow failed: {error}")
        else:
            logger.info(
                f"[{self.namespace}/{self.pod_name}] Log follow ended after {self.lines_forwarded} line(s)"
            )


class ClusterResourceManager:
    """
    Manages the Kubernetes resources of the build sandbox and the deployed applications.

    API clients may be injected (tests); otherwise the kube config is loaded once per
    process and fresh API objects are created.
    """

    def __init__(self, core_v1=None, apps_v1=None, networking_v1=None, batch_v1=None,
                 sleep: Callable[[float], None] = time.sleep,
                 clock: Callable[[], float] = time.monotonic):
        if None in (core_v1, apps_v1, networking_v1, batch_v1):
            load_kube_config()
        self.core_v1 = core_v1 or client.CoreV1Api()
        self.apps_v1 = apps_v1 or client.AppsV1Api()
        self.networking_v1 = networking_v1 or client.NetworkingV1Api()
        self.batch_v1 = batch_v1 or client.BatchV1Api()
        self.kinds = build_resource_kinds(self.core_v1, self.apps_v1, self.networking_v1, self.batch_v1)
        self._sleep = sleep
        self._clock = clock

    # =========================================================================
    # APPLY / DELETE
    # =========================================================================

    def apply(self, tag: ResourceKindTag, manifest: Any, namespace: Optional[str] = None) -> Any:
        """Read; replace if it exists, create on 404. Any other read error propagates."""
        kind = self.kinds[tag]
        name = _manifest_name(manifest)
        target = namespace if kind.namespaced else None
        try:
            existing = kind.read(name, target)
        except ApiException as e:
            if not is_not_found(e):
                logger.error(f"[K8S] Failed to apply {tag.value} '{name}': {e.reason}")
                raise
            logger.info(f"[K8S] {tag.value} '{name}' not found. Creating...")
            result = kind.create(manifest, target)
            logger.info(f"[K8S] {tag.value} '{name}' created")
            return result

        logger.info(f"[K8S] {tag.value} '{name}' already exists. Replacing...")
        _set_resource_version(manifest, existing)
        result = kind.replace(name, manifest, target)
        logger.info(f"[K8S] {tag.value} '{name}' replaced")
        return result

    def apply_namespace(self, name: str, labels: Optional[Dict[str, str]] = None) -> Any:
        return self.apply(ResourceKindTag.NAMESPACE, manifests.namespace_manifest(name, labels))

    def apply_deployment(self, namespace: str, app_name: str, image_uri: str, port: int) -> Any:
        return self.apply(
            ResourceKindTag.DEPLOYMENT,
            manifests.deployment_manifest(app_name, image_uri, port),
            namespace,
        )

    def apply_service(self, namespace: str, app_name: str, port: int) -> Any:
        return self.apply(ResourceKindTag.SERVICE, manifests.service_manifest(app_name, port), namespace)

    def apply_ingress(self, namespace: str, app_name: str, host: str,
                      ingress_class: str, cluster_issuer: str) -> Any:
        return self.apply(
            ResourceKindTag.INGRESS,
            manifests.ingress_manifest(app_name, host, ingress_class, cluster_issuer),
            namespace,
        )

    def apply_secret(self, namespace: str, manifest: client.V1Secret) -> Any:
        return self.apply(ResourceKindTag.SECRET, manifest, namespace)

    def create_job(self, namespace: str, manifest: Dict[str, Any]) -> Any:
        name = _manifest_name(manifest)
        result = self.kinds[ResourceKindTag.JOB].create(manifest, namespace)
        logger.info(f"[K8S] Job '{name}' submitted to {namespace}")
        return result

    def delete_namespace(self, name: str) -> bool:
        """Best-effort delete. 404 counts as success; other errors are logged, never raised."""
        try:
            self.kinds[ResourceKindTag.NAMESPACE].delete(name)
            logger.info(f"[K8S] Namespace {name} deleted")
            return True
        except ApiException as e:
            if is_not_found(e):
                logger.info(f"[K8S] Namespace {name} already gone")
                return True
            logger.error(f"[K8S] Could not delete namespace {name}: {e.reason}")
        except Exception as e:
            logger.error(f"[K8S] Could not delete namespace {name}: {e}")
        return False

    def delete_app_resources(self, namespace: str, app_name: str) -> bool:
        """Best-effort removal of one app's Ingress, Service and Deployment."""
        ok = True
        for tag in (ResourceKindTag.INGRESS, ResourceKindTag.SERVICE, ResourceKindTag.DEPLOYMENT):
            try:
                self.kinds[tag].delete(app_name, namespace)
            except ApiException as e:
                if not is_not_found(e):
                    ok = False
                    logger.error(f"[K8S] Could not delete {tag.value} {namespace}/{app_name}: {e.reason}")
            except Exception as e:
                ok = False
                logger.error(f"[K8S] Could not delete {tag.value} {namespace}/{app_name}: {e}")
        return ok

    # =========================================================================
    # DIAGNOSTICS
    # =========================================================================

    def get_object_events(self, namespace: str, name: str, limit: int = 10) -> List[str]:
        events = self.core_v1.list_namespaced_event(
            namespace=namespace,
            field_selector=f"involvedObject.name={name}",
        ).items
        events = sorted(events, key=_event_time)[-limit:]
        return [f"- {e.type} ({e.reason}): {e.message}" for e in events]

    def get_latest_pod_events(self, namespace: str, label_selector: str) -> str:
        """Events of the most recently created pod matching the selector. Never raises."""
        try:
            pods = self.core_v1.list_namespaced_pod(namespace=namespace, label_selector=label_selector).items
            if not pods:
                return f"No pods found for selector {label_selector}."
            latest = max(pods, key=_created_at)
            pod_name = latest.metadata.name
            events = self.get_object_events(namespace, pod_name)
            if not events:
                phase = latest.status.phase if latest.status else "Unknown"
                return f"No events found for the latest pod {pod_name}. Pod status: {phase}"
            return "\n".join(events)
        except Exception as e:
            logger.warning(f"[K8S] Could not retrieve pod events in {namespace}: {e}")
            return "Could not retrieve pod events."

    def read_pod_logs(self, namespace: str, pod_name: str, container: str, tail_lines: int = 100) -> str:
        """Last lines of a container's output. Never raises."""
        try:
            return self.core_v1.read_namespaced_pod_log(
                name=pod_name,
                namespace=namespace,
                container=container,
                tail_lines=tail_lines,
            ) or ""
        except Exception as e:
            logger.warning(f"[K8S] Could not read logs of {namespace}/{pod_name}: {e}")
            return "Could not retrieve pod logs."

    def pod_diagnostics(self, namespace: str, pod_name: str, container: str) -> str:
        try:
            events = "\n".join(self.get_object_events(namespace, pod_name)) or "No events."
        except Exception as e:
            events = f"Could not retrieve pod events: {e}"
        logs = self.read_pod_logs(namespace, pod_name, container)
        return f"Pod events:\n{events}\nPod logs:\n{logs}"

    # =========================================================================
    # BOUNDED WAITS
    # =========================================================================

    def wait_for_job_pod(self, namespace: str, job_name: str, retries: int, interval: float) -> str:
        """Wait for the Job's pod to exist. Returns the pod name."""
        selector = f"job-name={job_name}"

        def check():
            pods = self.core_v1.list_namespaced_pod(namespace=namespace, label_selector=selector).items
            if pods:
                return max(pods, key=_created_at).metadata.name
            logger.debug(f"[K8S] Waiting for pod of job {job_name}...")
            return None

        pod_name = poll_until(check, timeout=retries * interval, interval=interval, sleep=self._sleep, clock=self._clock)
        if pod_name is None:
            try:
                events = "\n".join(self.get_object_events(namespace, job_name)) or "No job events."
            except Exception as e:
                events = f"Could not retrieve job events: {e}"
            raise PodNotScheduled(f"No pod created for job {job_name} after {retries} attempts", events)
        logger.info(f"[K8S] Job {job_name} scheduled pod {pod_name}")
        return pod_name

    def wait_for_pod_started(self, namespace: str, pod_name: str, container: str,
                             timeout: float, interval: float) -> str:
        """Wait for the pod to leave Pending. Returns its phase."""
        def check():
            pod = self.core_v1.read_namespaced_pod(name=pod_name, namespace=namespace)
            phase = pod.status.phase if pod.status else None
            if phase and phase != "Pending":
                return phase
            return None

        phase = poll_until(check, timeout=timeout, interval=interval, sleep=self._sleep, clock=self._clock)
        if phase is None:
            raise PodNotReady(
                f"Pod {pod_name} still Pending after {timeout}s",
                self.pod_diagnostics(namespace, pod_name, container),
            )
        logger.info(f"[K8S] Pod {pod_name} is {phase}")
        return phase

    def wait_for_job_completion(self, namespace: str, job_name: str, pod_name: str, container: str,
                                timeout: float, interval: float) -> str:
        """Poll Job status until succeeded or failed. Returns 'succeeded' or 'failed'."""
        def check():
            job = self.batch_v1.read_namespaced_job_status(name=job_name, namespace=namespace)
            status = job.status
            if status is None:
                return None
            if status.succeeded:
                return "succeeded"
            if status.failed:
                return "failed"
            return None

        outcome = poll_until(check, timeout=timeout, interval=interval, sleep=self._sleep, clock=self._clock)
        if outcome is None:
            raise JobNotTerminal(
                f"Job {job_name} did not finish within {timeout}s",
                self.pod_diagnostics(namespace, pod_name, container),
            )
        logger.info(f"[K8S] Job {job_name} {outcome}")
        return outcome

    def wait_for_rollout(self, namespace: str, app_name: str, timeout: float, interval: float) -> None:
        """Wait until available == updated == replicas == desired spec replicas."""
        def check():
            deployment = self.apps_v1.read_namespaced_deployment(name=app_name, namespace=namespace)
            desired = deployment.spec.replicas if deployment.spec else None
            status = deployment.status
            if status is not None and desired is not None and (
                status.available_replicas == status.updated_replicas == status.replicas == desired
            ):
                return True
            logger.info(
                f"[{app_name}] Waiting for rollout... "
                f"Available: {(status.available_replicas if status else None) or 0}, "
                f"Updated: {(status.updated_replicas if status else None) or 0}, "
                f"Total: {(status.replicas if status else None) or 0}, Desired: {desired}"
            )
            return None

        if poll_until(check, timeout=timeout, interval=interval, sleep=self._sleep, clock=self._clock) is None:
            events = self.get_latest_pod_events(namespace, f"app={app_name}")
            raise RolloutTimeout(
                f"Timeout waiting for deployment rollout for {app_name}. Last pod events:",
                events,
            )
        logger.info(f"[K8S] Deployment {app_name} is ready")

    # =========================================================================
    # LOG FOLLOW
    # =========================================================================

    def follow_pod_logs(self, namespace: str, pod_name: str, container: str,
                        sink: Callable[[str], None]) -> LogFollower:
        """Start a supervised background follow and return immediately."""
        return LogFollower(self.core_v1, namespace, pod_name, container, sink).start()
