"""kubectl over the execution engine."""

from __future__ import annotations

import json
from typing import TYPE_CHECKING, Any

from burrow.core.exceptions import InvalidStateError
from burrow.core.shell import feed, quote


if TYPE_CHECKING:
    from burrow.execution.engine import ExecutionEngine, LineCallback
    from burrow.models import CommandExecution, Release


DEFAULT_NAMESPACE = "default"


class Kubectl:
    """Runs kubectl on a release's server.

    Every call is a recorded execution for the release.

    Args:
        engine: Execution engine.
        release: Release whose k3s node runs the commands.
        prefix: Object name prefix for process-level helpers.
    """

    def __init__(self, engine: ExecutionEngine, release: Release, prefix: str):
        self.engine = engine
        self.release = release
        self.prefix = prefix

    async def _run(
        self,
        command: str,
        raise_on_error: bool = True,
        timeout: float | None = None,
        category: str | None = None,
        on_line: LineCallback | None = None,
    ) -> CommandExecution:
        return await self.engine.exec(
            self.release,
            command,
            category=category,
            raise_on_error=raise_on_error,
            timeout=timeout,
            on_line=on_line,
        )

    async def apply(self, manifest_yaml: str, category: str | None = None) -> CommandExecution:
        """Apply a YAML stream with ``kubectl apply -f -``."""
        return await self._run(feed("kubectl apply -f -", manifest_yaml), category=category)

    async def delete(self, manifest_yaml: str) -> CommandExecution:
        command = feed("kubectl delete -f - --ignore-not-found", manifest_yaml)
        return await self._run(command, raise_on_error=False)

    async def get(
        self, resource: str, name: str | None = None, namespace: str = DEFAULT_NAMESPACE
    ) -> dict[str, Any] | None:
        """Resource as parsed JSON, or None if kubectl fails."""
        command = f"kubectl get {quote(resource)}"
        if name:
            command += f" {quote(name)}"
        command += f" -n {quote(namespace)} -o json"
        execution = await self._run(command, raise_on_error=False)
        if not execution.success:
            return None
        try:
            return json.loads(execution.output)
        except json.JSONDecodeError:
            return None

    async def logs(
        self,
        deployment: str,
        tail: int = 100,
        namespace: str = DEFAULT_NAMESPACE,
        on_line: LineCallback | None = None,
    ) -> CommandExecution:
        return await self._run(
            f"kubectl logs deployment/{quote(deployment)} -n {quote(namespace)} --tail={int(tail)}",
            on_line=on_line,
        )

    async def exec(
        self,
        pod: str,
        command: str,
        namespace: str = DEFAULT_NAMESPACE,
        raise_on_error: bool = True,
        on_line: LineCallback | None = None,
    ) -> CommandExecution:
        return await self._run(
            f"kubectl exec {quote(pod)} -n {quote(namespace)} -- sh -c {quote(command)}",
            raise_on_error=raise_on_error,
            on_line=on_line,
        )

    async def get_pod_for_deployment(
        self, deployment: str, namespace: str = DEFAULT_NAMESPACE
    ) -> str | None:
        execution = await self._run(
            f"kubectl get pods -l app.kubernetes.io/name={quote(deployment)} -n {quote(namespace)} "
            "-o jsonpath='{.items[0].metadata.name}'",
            raise_on_error=False,
        )
        if not execution.success:
            return None
        return execution.output.strip().replace("'", "") or None

    async def scale(self, deployment: str, replicas: int, namespace: str = DEFAULT_NAMESPACE) -> CommandExecution:
        return await self._run(
            f"kubectl scale deployment/{quote(deployment)} --replicas={int(replicas)} -n {quote(namespace)}"
        )

    async def rollout_restart(self, deployment: str, namespace: str = DEFAULT_NAMESPACE) -> CommandExecution:
        return await self._run(
            f"kubectl rollout restart deployment/{quote(deployment)} -n {quote(namespace)}"
        )

    async def rollout_status(
        self, deployment: str, namespace: str = DEFAULT_NAMESPACE, timeout: int = 300
    ) -> CommandExecution:
        """Block until a deployment finishes rolling out.

        Raises:
            RemoteCommandError: If the rollout does not finish within ``timeout``.
        """
        return await self._run(
            f"kubectl rollout status deployment/{quote(deployment)} -n {quote(namespace)} --timeout={int(timeout)}s",
            timeout=timeout + 30,
        )

    async def delete_resource(
        self, resource: str, name: str, namespace: str = DEFAULT_NAMESPACE
    ) -> CommandExecution:
        return await self._run(
            f"kubectl delete {quote(resource)} {quote(name)} -n {quote(namespace)} --ignore-not-found",
            raise_on_error=False,
        )

    async def container_exec(
        self, release: Release, command: str, on_line: LineCallback | None = None, process: str = "web"
    ) -> CommandExecution:
        """Run a command in the pod of one of the release's processes.

        Raises:
            InvalidStateError: If the deployment has no pod.
        """
        deployment = f"{self.prefix}-{process}"
        pod = await self.get_pod_for_deployment(deployment)
        if not pod:
            raise InvalidStateError(
                f"Pod not found for deployment: {deployment}",
                workload_id=release.id,
                current_state=release.state,
            )
        return await self.exec(pod, command, raise_on_error=False, on_line=on_line)
