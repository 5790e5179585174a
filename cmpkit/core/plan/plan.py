from __future__ import annotations

import itertools
import logging
from typing import Any, Dict, List, Optional

from cmpkit.core.models import Model

from .models import Connection, Dependency, Task

log = logging.getLogger("cmpkit.plan")


class Plan:
    """In-memory, additive-only task graph."""

    def __init__(self):
        self._ids = itertools.count(1)
        self.tasks: Dict[int, Task] = {}
        self.dependencies: List[Dependency] = []
        self.connections: List[Connection] = []

    def add_task(self, model: Model, arguments: Optional[Dict[str, Any]] = None) -> Task:
        task = Task(
            id=next(self._ids),
            model=model,
            arguments=dict(arguments or {}),
            abstract=bool(model.abstract),
        )
        self.tasks[task.id] = task
        log.debug("added task %s", task.name)
        return task

    def add_dependency(self, parent: Task, child: Task, role: str, options: Optional[Dict[str, Any]] = None) -> Dependency:
        dep = Dependency(parent=parent.id, child=child.id, role=role, options=dict(options or {}))
        self.dependencies.append(dep)
        return dep

    def add_connection(
        self,
        source: Task,
        source_port: str,
        sink: Task,
        sink_port: str,
        policy: Optional[Dict[str, Any]] = None,
    ) -> Connection:
        conn = Connection(
            source=source.id,
            source_port=source_port,
            sink=sink.id,
            sink_port=sink_port,
            policy=dict(policy or {}),
        )
        self.connections.append(conn)
        return conn

    # ------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------
    def children_of(self, task: Task) -> Dict[str, Task]:
        return {d.role: self.tasks[d.child] for d in self.dependencies if d.parent == task.id}

    def child_of(self, task: Task, role: str) -> Optional[Task]:
        return self.children_of(task).get(role)

    def resolve_role_path(self, task: Task, path: str) -> Optional[Task]:
        current: Optional[Task] = task
        for role in path.split("."):
            if current is None:
                return None
            current = self.child_of(current, role)
        return current

    def data_flow(self, forward: bool = False) -> List[Connection]:
        """Connections between tasks; `forward` includes exported-port forwarding."""
        return [c for c in self.connections if forward or not c.policy.get("forward")]

    def to_dict(self) -> dict:
        return {
            "tasks": [t.to_dict() for t in self.tasks.values()],
            "dependencies": [d.to_dict() for d in self.dependencies],
            "connections": [c.to_dict() for c in self.connections],
        }
