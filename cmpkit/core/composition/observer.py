"""Hooks called by the specialization manager and the instantiation algorithm.

The algorithms never log directly; they report what happened to an observer.
`InstantiationObserver` ignores everything, `LoggingObserver` logs at debug
level and bumps the engine counters.
"""

from __future__ import annotations

import logging
from typing import Iterable

from cmpkit.core.observability.metrics import inc_named

log = logging.getLogger("cmpkit.instantiate")
spec_log = logging.getLogger("cmpkit.specializations")


class InstantiationObserver:
    def specialization_selected(self, model, specialized) -> None:
        pass

    def specialization_materialized(self, root, model, applied) -> None:
        pass

    def specialization_block_failed(self, model, block, error: Exception) -> None:
        pass

    def fixed_point_pass(self, model, pass_number: int, resolved: Iterable[str], deferred: Iterable[str]) -> None:
        pass

    def child_dropped(self, model, child_name: str) -> None:
        pass

    def connection_dropped(self, model, source: str, sink: str) -> None:
        pass

    def instantiated(self, model, task) -> None:
        pass


class LoggingObserver(InstantiationObserver):
    def specialization_selected(self, model, specialized) -> None:
        log.debug("using specialization %s of %s", specialized.name, model.name)
        inc_named("specialization_selected")

    def specialization_materialized(self, root, model, applied) -> None:
        spec_log.debug(
            "materialized %s from %s (%s)",
            model.name,
            root.name,
            ", ".join(sorted(str(s) for s in applied)),
        )
        inc_named("specialization_materialized")

    def specialization_block_failed(self, model, block, error: Exception) -> None:
        spec_log.warning(
            "customization block %s failed on %s: %s",
            getattr(block, "__name__", repr(block)),
            model.name,
            error,
        )
        inc_named("specialization_block_failed")

    def fixed_point_pass(self, model, pass_number, resolved, deferred) -> None:
        log.debug(
            "%s pass %d resolved=%s deferred=%s",
            model.name,
            pass_number,
            sorted(resolved),
            sorted(deferred),
        )

    def child_dropped(self, model, child_name) -> None:
        log.debug("dropped optional child %s of %s", child_name, model.name)
        inc_named("optional_child_dropped")

    def connection_dropped(self, model, source, sink) -> None:
        log.debug("dropped connections %s -> %s of %s", source, sink, model.name)

    def instantiated(self, model, task) -> None:
        log.debug("instantiated %s as task %s", model.name, task.id)
        inc_named("composition_instantiated")


_DEFAULT = LoggingObserver()


def default_observer() -> InstantiationObserver:
    return _DEFAULT
