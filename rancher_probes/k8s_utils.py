"""
Kubernetes utilities using Python Kubernetes client.

This module provides high-level functions for the cluster operations the probes need.
Reads, exec and object creation go through the official client; `kubectl` is only used
for cp, debug and port-forward, which have no single-call client equivalent.
"""
import os
import signal
import subprocess
import time
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional

from kubernetes import client, config
from kubernetes.client.rest import ApiException
from kubernetes.config import ConfigException
from kubernetes.stream import stream
from urllib3.exceptions import HTTPError

# Lazy initialization of Kubernetes clients
_core_v1: Optional[client.CoreV1Api] = None
_batch_v1: Optional[client.BatchV1Api] = None
_apiextensions_v1: Optional[client.ApiextensionsV1Api] = None
_custom_objects: Optional[client.CustomObjectsApi] = None
_config_loaded = False
_kubeconfig: Optional[str] = None


@dataclass(frozen=True)
class ExecResult:
    stdout: str
    stderr: str
    returncode: Optional[int]

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    @property
    def output(self) -> str:
        return self.stdout + self.stderr


def configure(kubeconfig: Optional[str] = None) -> None:
    """Select the kubeconfig file used by both the client and kubectl, dropping cached clients."""
    global _core_v1, _batch_v1, _apiextensions_v1, _custom_objects, _config_loaded, _kubeconfig
    _core_v1 = _batch_v1 = _apiextensions_v1 = _custom_objects = None
    _kubeconfig = kubeconfig
    config.load_kube_config(config_file=kubeconfig)
    _config_loaded = True


def _ensure_config_loaded() -> None:
    """Ensure Kubernetes config is loaded."""
    global _config_loaded
    if not _config_loaded:
        config.load_kube_config(config_file=_kubeconfig)
        _config_loaded = True


def _get_core_v1() -> client.CoreV1Api:
    """Get or create CoreV1Api client."""
    global _core_v1
    _ensure_config_loaded()
    if _core_v1 is None:
        _core_v1 = client.CoreV1Api()
    return _core_v1


def _get_batch_v1() -> client.BatchV1Api:
    """Get or create BatchV1Api client."""
    global _batch_v1
    _ensure_config_loaded()
    if _batch_v1 is None:
        _batch_v1 = client.BatchV1Api()
    return _batch_v1


def _get_apiextensions_v1() -> client.ApiextensionsV1Api:
    global _apiextensions_v1
    _ensure_config_loaded()
    if _apiextensions_v1 is None:
        _apiextensions_v1 = client.ApiextensionsV1Api()
    return _apiextensions_v1


def _get_custom_objects() -> client.CustomObjectsApi:
    global _custom_objects
    _ensure_config_loaded()
    if _custom_objects is None:
        _custom_objects = client.CustomObjectsApi()
    return _custom_objects


def _api_error(message: str, e: ApiException) -> RuntimeError:
    return RuntimeError(f"{message}: {e.status} {e.reason}")


def kubectl_cmd(args: List[str]) -> List[str]:
    """Build a kubectl command line bound to the configured kubeconfig."""
    cmd = ["kubectl"]
    # --kubeconfig takes a single file; path lists go through $KUBECONFIG instead.
    if _kubeconfig and os.pathsep not in _kubeconfig:
        cmd.append(f"--kubeconfig={_kubeconfig}")
    return cmd + args


def kubectl_env() -> Optional[Dict[str, str]]:
    """Environment for kubectl when the configured kubeconfig is a path list, else None."""
    if _kubeconfig and os.pathsep in _kubeconfig:
        return {**os.environ, "KUBECONFIG": _kubeconfig}
    return None


def current_context() -> str:
    try:
        _, active_context = config.list_kube_config_contexts(config_file=_kubeconfig)
    except (ConfigException, OSError):
        return "Unknown"
    return (active_context or {}).get("name", "Unknown")


def check_cluster_access() -> bool:
    """Return True if the API server answers a node list request."""
    try:
        _get_core_v1().list_node(limit=1)
        return True
    except (ApiException, ConfigException, HTTPError, OSError):
        return False


def namespace_exists(name: str) -> bool:
    try:
        _get_core_v1().read_namespace(name=name)
        return True
    except ApiException as e:
        if e.status == 404:
            return False
        raise _api_error(f"Failed to read namespace {name}", e) from e


def list_pod_names(
    namespace: str,
    label_selector: Optional[str] = None,
    name_prefix: Optional[str] = None,
    exclude_substrings: Iterable[str] = ("webhook",),
) -> List[str]:
    """
    List pod names in a namespace.

    Args:
        namespace: Kubernetes namespace
        label_selector: Label selector (e.g., "app=rancher")
        name_prefix: Keep only pods whose name starts with this prefix
        exclude_substrings: Drop pods whose name contains any of these

    Returns:
        Pod names in API order

    Raises:
        RuntimeError: If the pod list request fails
    """
    kwargs: Dict[str, Any] = {"namespace": namespace}
    if label_selector:
        kwargs["label_selector"] = label_selector

    try:
        pods = _get_core_v1().list_namespaced_pod(**kwargs)
    except ApiException as e:
        raise _api_error(f"Failed to list pods in namespace '{namespace}'", e) from e

    excluded = tuple(exclude_substrings)
    names = []
    for pod in pods.items:
        name = pod.metadata.name
        if name_prefix and not name.startswith(name_prefix):
            continue
        if any(part in name for part in excluded):
            continue
        names.append(name)
    return names


def get_pod_phase(pod_name: str, namespace: str) -> str:
    try:
        pod = _get_core_v1().read_namespaced_pod(name=pod_name, namespace=namespace)
    except ApiException as e:
        raise _api_error(f"Failed to read pod {pod_name}", e) from e
    return pod.status.phase or "Unknown"


def exec_in_pod(
    pod_name: str, namespace: str, command: List[str], timeout: int = 120
) -> ExecResult:
    """
    Execute command in pod.

    Args:
        pod_name: Pod name
        namespace: Kubernetes namespace
        command: Command to execute (list of strings)
        timeout: Seconds to wait for the command to finish

    Returns:
        ExecResult with separated stdout/stderr and the exit code (None if unknown)

    Raises:
        RuntimeError: If the exec request itself fails
    """
    try:
        resp = stream(
            _get_core_v1().connect_get_namespaced_pod_exec,
            pod_name,
            namespace,
            command=command,
            stdout=True,
            stderr=True,
            stdin=False,
            tty=False,
            _preload_content=False,
        )
    except ApiException as e:
        raise _api_error(f"Failed to execute command in pod {pod_name}", e) from e

    try:
        resp.run_forever(timeout=timeout)
        stdout = resp.read_stdout() or ""
        stderr = resp.read_stderr() or ""
        returncode = resp.returncode
    finally:
        resp.close()

    return ExecResult(stdout=stdout, stderr=stderr, returncode=returncode)


def _run_kubectl(args: List[str], timeout: Optional[int] = None) -> subprocess.CompletedProcess:
    cmd = kubectl_cmd(args)
    try:
        return subprocess.run(
            cmd, check=True, text=True, capture_output=True, timeout=timeout, env=kubectl_env()
        )
    except subprocess.CalledProcessError as e:
        error_msg = f"kubectl command failed: {' '.join(cmd)}"
        if e.stderr:
            error_msg += f"\nstderr: {e.stderr.strip()}"
        raise RuntimeError(error_msg) from e
    except subprocess.TimeoutExpired as e:
        raise RuntimeError(f"kubectl command timed out after {timeout}s: {' '.join(cmd)}") from e


def copy_from_pod(pod_name: str, namespace: str, remote_path: str, local_path: str) -> None:
    """
    Copy a file out of a pod using kubectl cp.

    Raises:
        RuntimeError: If copy fails
    """
    _run_kubectl(["cp", f"{namespace}/{pod_name}:{remote_path}", local_path, "--retries=3"])


def copy_to_pod(pod_name: str, namespace: str, local_path: str, remote_path: str) -> None:
    """
    Copy a file into a pod using kubectl cp.

    Raises:
        RuntimeError: If copy fails
    """
    _run_kubectl(["cp", local_path, f"{namespace}/{pod_name}:{remote_path}", "--retries=3"])


def debug_pod(
    pod_name: str, namespace: str, image: str, script: str, timeout: int = 180
) -> subprocess.CompletedProcess:
    """
    Run a script in a non-interactive ephemeral debug container attached to the pod.

    The result is returned even on a non-zero exit; callers inspect the output.
    """
    cmd = kubectl_cmd(
        [
            "debug",
            "-n",
            namespace,
            f"pod/{pod_name}",
            f"--image={image}",
            "--quiet",
            "--",
            "sh",
            "-c",
            script,
        ]
    )
    try:
        return subprocess.run(
            cmd, text=True, capture_output=True, timeout=timeout, env=kubectl_env()
        )
    except subprocess.TimeoutExpired as e:
        raise RuntimeError(f"Debug container for {pod_name} timed out after {timeout}s") from e


def port_forward(
    pod_name: str, namespace: str, local_port: int, remote_port: int
) -> subprocess.Popen:
    """
    Start `kubectl port-forward` in the background.

    Returns:
        subprocess.Popen process handle; stop it with stop_process()
    """
    cmd = kubectl_cmd(
        ["port-forward", "-n", namespace, f"pod/{pod_name}", f"{local_port}:{remote_port}"]
    )
    return subprocess.Popen(
        cmd, stdout=subprocess.DEVNULL, stderr=subprocess.DEVNULL, env=kubectl_env()
    )


def stop_process(proc: subprocess.Popen, timeout: int = 5) -> None:
    if proc.poll() is not None:
        return
    proc.send_signal(signal.SIGINT)
    try:
        proc.wait(timeout=timeout)
    except subprocess.TimeoutExpired:
        proc.kill()
        proc.wait()


def create_namespace(name: str, labels: Optional[Dict[str, str]] = None) -> None:
    body = {"apiVersion": "v1", "kind": "Namespace", "metadata": {"name": name}}
    if labels:
        body["metadata"]["labels"] = labels
    try:
        _get_core_v1().create_namespace(body=body)
    except ApiException as e:
        raise _api_error(f"Failed to create namespace {name}", e) from e


def delete_namespace(name: str) -> None:
    try:
        _get_core_v1().delete_namespace(name=name)
    except ApiException as e:
        raise _api_error(f"Failed to delete namespace {name}", e) from e


def create_pod(namespace: str, manifest: Dict[str, Any]) -> None:
    try:
        _get_core_v1().create_namespaced_pod(namespace=namespace, body=manifest)
    except ApiException as e:
        raise _api_error(f"Failed to create pod {manifest['metadata']['name']}", e) from e


def delete_pods(namespace: str, label_selector: str) -> None:
    try:
        _get_core_v1().delete_collection_namespaced_pod(
            namespace=namespace, label_selector=label_selector
        )
    except ApiException as e:
        raise _api_error(f"Failed to delete pods '{label_selector}' in {namespace}", e) from e


def list_pods_summary(namespace: str, label_selector: Optional[str] = None) -> List[str]:
    """One "<name> <phase>" line per pod, for status dumps."""
    kwargs: Dict[str, Any] = {"namespace": namespace}
    if label_selector:
        kwargs["label_selector"] = label_selector
    try:
        pods = _get_core_v1().list_namespaced_pod(**kwargs)
    except ApiException as e:
        raise _api_error(f"Failed to list pods in namespace '{namespace}'", e) from e
    return [f"{pod.metadata.name} {pod.status.phase}" for pod in pods.items]


def wait_for_pods_running(
    namespace: str, label_selector: str, timeout: int = 60, interval: int = 5
) -> bool:
    """
    Wait until every pod matching the selector is Running.

    Returns:
        True once all selected pods (at least one) are Running, False on timeout
    """
    print(f"⏳ Waiting up to {timeout}s for all pods to be running in namespace {namespace}...")

    core_v1 = _get_core_v1()
    elapsed = 0

    while elapsed < timeout:
        try:
            pods = core_v1.list_namespaced_pod(
                namespace=namespace, label_selector=label_selector
            ).items
        except ApiException as e:
            print(f"   Error checking status: {e.status} - {e.reason}")
            pods = []

        not_running = [pod for pod in pods if pod.status.phase != "Running"]
        running_count = len(pods) - len(not_running)
        print(f"Current status: {running_count}/{len(pods)} pods running")

        if pods and not not_running:
            print("✅ All pods are now running")
            return True

        time.sleep(interval)
        elapsed += interval

        if not_running:
            print("Pods not yet running:")
            for pod in not_running:
                print(f"   {pod.metadata.name} {pod.status.phase}")

    print("❌ Timeout waiting for pods to be running")
    print("Final pod status:")
    for line in list_pods_summary(namespace, label_selector):
        print(f"   {line}")
    return False


def create_job(namespace: str, manifest: Dict[str, Any]) -> None:
    try:
        _get_batch_v1().create_namespaced_job(namespace=namespace, body=manifest)
    except ApiException as e:
        raise _api_error(f"Failed to create job {manifest['metadata']['name']}", e) from e


def delete_job(name: str, namespace: str) -> None:
    try:
        _get_batch_v1().delete_namespaced_job(
            name=name, namespace=namespace, propagation_policy="Background"
        )
    except ApiException as e:
        raise _api_error(f"Failed to delete job {name}", e) from e


def read_job_status(name: str, namespace: str) -> Dict[str, Any]:
    try:
        job = _get_batch_v1().read_namespaced_job_status(name=name, namespace=namespace)
    except ApiException as e:
        raise _api_error(f"Failed to read job {name}", e) from e
    return job.status.to_dict() if job.status else {}


def custom_resource_definition_exists(name: str) -> bool:
    try:
        _get_apiextensions_v1().read_custom_resource_definition(name=name)
        return True
    except ApiException as e:
        if e.status == 404:
            return False
        raise _api_error(f"Failed to read CRD {name}", e) from e


def ensure_custom_resource_definition(manifest: Dict[str, Any]) -> bool:
    """
    Create the CRD unless it already exists.

    Returns:
        True if the CRD was created by this call
    """
    name = manifest["metadata"]["name"]
    if custom_resource_definition_exists(name):
        print("CRD already exists")
        return False

    print("CRD does not exist, will create new")
    try:
        _get_apiextensions_v1().create_custom_resource_definition(body=manifest)
    except ApiException as e:
        raise _api_error(f"Failed to create CRD {name}", e) from e
    return True


def wait_for_crd_established(name: str, timeout: int = 30, interval: int = 1) -> bool:
    elapsed = 0
    while elapsed < timeout:
        try:
            crd = _get_apiextensions_v1().read_custom_resource_definition(name=name)
            conditions = (crd.status.conditions if crd.status else None) or []
            if any(c.type == "Established" and c.status == "True" for c in conditions):
                return True
        except ApiException as e:
            print(f"   Error checking CRD status: {e.status} - {e.reason}")
        time.sleep(interval)
        elapsed += interval
    return False


def delete_custom_resource_definition(name: str) -> None:
    try:
        _get_apiextensions_v1().delete_custom_resource_definition(name=name)
    except ApiException as e:
        raise _api_error(f"Failed to delete CRD {name}", e) from e


def create_namespaced_custom_object(
    group: str, version: str, plural: str, namespace: str, manifest: Dict[str, Any]
) -> None:
    try:
        _get_custom_objects().create_namespaced_custom_object(
            group=group, version=version, namespace=namespace, plural=plural, body=manifest
        )
    except ApiException as e:
        raise _api_error(f"Failed to create {plural} {manifest['metadata']['name']}", e) from e


def list_job_pods(job_name: str, namespace: str) -> List[str]:
    """One "<name> <phase>" line per pod created by the job."""
    return list_pods_summary(namespace, label_selector=f"job-name={job_name}")
