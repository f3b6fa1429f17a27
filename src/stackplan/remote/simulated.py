"""Simulated control plane backed by an in-memory store and optional JSON file."""

import json
import os
import tempfile
import threading
import time
import uuid
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple
from .base import ControlPlane, RemoteResult
from ..ingest.models import ResourceSpec
from ..utils.errors import PermanentRemoteError, TransientRemoteError, StateError
from ..utils.logging import get_logger

logger = get_logger("remote.simulated")

FAILURE_KINDS = ("transient", "permanent")


class SimulatedControlPlane(ControlPlane):
    """
    Control plane that keeps resources in a dictionary.

    Used by the CLI for local runs and by tests as a double. Failures can be
    injected per resource id with ``fail()``; ``calls`` records every remote
    call that reached the store, in order.
    """

    def __init__(self, path: Optional[str] = None, latency: float = 0.0):
        self.path = Path(path) if path else None
        self.latency = latency
        self.calls: List[Tuple[str, str]] = []
        self.max_in_flight = 0
        self._in_flight = 0
        self._lock = threading.Lock()
        self._failures: Dict[str, List[str]] = {}
        self._resources: Dict[str, Dict[str, Any]] = {}
        self._tokens: Dict[str, Any] = {}
        if self.path and self.path.exists():
            self._load()

    def fail(self, resource_id: str, kind: str = "transient", times: int = 1) -> None:
        """Make the next ``times`` calls touching resource_id raise the given kind of error."""
        if kind not in FAILURE_KINDS:
            raise ValueError(f"Unknown failure kind '{kind}', expected one of {FAILURE_KINDS}")
        with self._lock:
            self._failures.setdefault(resource_id, []).extend([kind] * times)

    def create(self, spec: ResourceSpec, token: str) -> RemoteResult:
        with self._call("create", spec.id, token) as cached:
            if cached is not None:
                return RemoteResult(**cached)
            physical_id = f"{spec.id}-{uuid.uuid4().hex[:8]}"
            attributes = self._attributes(spec, physical_id)
            with self._lock:
                self._resources[physical_id] = {
                    "resource_id": spec.id,
                    "type": spec.type,
                    "attributes": attributes,
                }
                result = RemoteResult(physical_id=physical_id, attributes=attributes)
                self._tokens[token] = result.model_dump()
                self._save()
            logger.debug(f"Created {spec.id} as {physical_id}")
            return result

    def update(self, physical_id: str, spec: ResourceSpec, token: str) -> Dict[str, Any]:
        with self._call("update", spec.id, token) as cached:
            if cached is not None:
                return dict(cached)
            with self._lock:
                if physical_id not in self._resources:
                    raise PermanentRemoteError(f"Resource {physical_id} not found", resource_ids=[spec.id])
                attributes = self._attributes(spec, physical_id)
                self._resources[physical_id]["attributes"] = attributes
                self._tokens[token] = attributes
                self._save()
            logger.debug(f"Updated {spec.id} ({physical_id})")
            return attributes

    def delete(self, physical_id: str, token: str) -> None:
        with self._lock:
            record = self._resources.get(physical_id)
        resource_id = record["resource_id"] if record else physical_id
        with self._call("delete", resource_id, token) as cached:
            if cached is not None:
                return None
            with self._lock:
                self._resources.pop(physical_id, None)
                self._tokens[token] = True
                self._save()
            logger.debug(f"Deleted {resource_id} ({physical_id})")
            return None

    def exists(self, physical_id: str) -> bool:
        with self._lock:
            return physical_id in self._resources

    def resource_ids(self) -> List[str]:
        """Logical ids of every live resource."""
        with self._lock:
            return [r["resource_id"] for r in self._resources.values()]

    def _attributes(self, spec: ResourceSpec, physical_id: str) -> Dict[str, Any]:
        attributes = dict(spec.properties)
        attributes["id"] = physical_id
        attributes["arn"] = f"arn:sim:{spec.type}:{physical_id}"
        return attributes

    def _call(self, operation: str, resource_id: str, token: str) -> "_RemoteCall":
        return _RemoteCall(self, operation, resource_id, token)

    def _load(self) -> None:
        try:
            with open(self.path, 'r', encoding='utf-8') as f:
                data = json.load(f)
        except (OSError, json.JSONDecodeError) as e:
            raise StateError(f"Cannot read simulated control plane store {self.path}: {e}")
        self._resources = data.get("resources", {})
        self._tokens = data.get("tokens", {})

    def _save(self) -> None:
        # Caller holds self._lock.
        if not self.path:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=".remote-", suffix=".json", dir=self.path.parent)
            with os.fdopen(fd, 'w', encoding='utf-8') as f:
                json.dump({"resources": self._resources, "tokens": self._tokens}, f, indent=2, default=str)
            os.replace(tmp_name, self.path)
        except OSError as e:
            raise StateError(f"Failed to write simulated control plane store {self.path}: {e}")


class _RemoteCall:
    """Context manager around one remote call: idempotency lookup, injected faults, latency."""

    def __init__(self, plane: SimulatedControlPlane, operation: str, resource_id: str, token: str):
        self.plane = plane
        self.operation = operation
        self.resource_id = resource_id
        self.token = token

    def __enter__(self) -> Optional[Any]:
        plane = self.plane
        with plane._lock:
            plane._in_flight += 1
            plane.max_in_flight = max(plane.max_in_flight, plane._in_flight)
            cached = plane._tokens.get(self.token)
            pending = plane._failures.get(self.resource_id)
            failure = pending.pop(0) if pending and cached is None else None

        if plane.latency:
            time.sleep(plane.latency)

        if failure is not None:
            # __exit__ does not run when __enter__ raises.
            with plane._lock:
                plane._in_flight -= 1
        if failure == "transient":
            raise TransientRemoteError(
                f"Simulated throttling on {self.operation} {self.resource_id}",
                resource_ids=[self.resource_id],
            )
        if failure == "permanent":
            raise PermanentRemoteError(
                f"Simulated rejection of {self.operation} {self.resource_id}",
                resource_ids=[self.resource_id],
            )

        with plane._lock:
            plane.calls.append((self.operation, self.resource_id))
        return cached

    def __exit__(self, exc_type, exc, tb) -> bool:
        with self.plane._lock:
            self.plane._in_flight -= 1
        return False
