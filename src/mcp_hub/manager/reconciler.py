"""
Pure diff between two server-configuration snapshots.
"""
from collections.abc import Mapping
from dataclasses import dataclass

from ..models.servers import ServerConfig

# Fields whose change requires tearing a connection down and starting it again.
# Keep in sync with the models in models/servers.py; tests enforce coverage.
COMMON_RESTART_FIELDS: tuple[str, ...] = ("transport", "name", "description", "enabled")
TRANSPORT_RESTART_FIELDS: dict[str, tuple[str, ...]] = {
    "stdio": ("command", "args", "env", "cwd"),
    "http": ("url", "headers"),
    "websocket": ("url", "headers", "reconnect_attempts", "reconnect_delay_ms"),
}


@dataclass(frozen=True)
class ReconcilePlan:
    to_add: frozenset[str]
    to_remove: frozenset[str]
    to_restart: frozenset[str]
    unchanged: frozenset[str]

    @property
    def is_noop(self) -> bool:
        return not (self.to_add or self.to_remove or self.to_restart)


def requires_restart(previous: ServerConfig, new: ServerConfig) -> bool:
    if previous.transport != new.transport:
        return True
    fields = COMMON_RESTART_FIELDS + TRANSPORT_RESTART_FIELDS[new.transport]
    return any(getattr(previous, f) != getattr(new, f) for f in fields)


def plan_reconciliation(previous: Mapping[str, ServerConfig], new: Mapping[str, ServerConfig]) -> ReconcilePlan:
    """Partitions server ids into add / remove / restart / unchanged.

    The four sets are disjoint and together cover every id in either snapshot.
    """
    previous_ids = set(previous)
    new_ids = set(new)
    common = previous_ids & new_ids
    to_restart = {sid for sid in common if requires_restart(previous[sid], new[sid])}
    return ReconcilePlan(
        to_add=frozenset(new_ids - previous_ids),
        to_remove=frozenset(previous_ids - new_ids),
        to_restart=frozenset(to_restart),
        unchanged=frozenset(common - to_restart),
    )
