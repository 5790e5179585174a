from .context import SelectionContext
from .models import Connection, Dependency, Requirement, SlotReference, Task
from .plan import Plan

__all__ = [
    "Connection",
    "Dependency",
    "Plan",
    "Requirement",
    "SelectionContext",
    "SlotReference",
    "Task",
]
