from resilience.coordinator.state import (
    GlobalState,
    Notification,
    NotificationKind,
    RetryQueueItem,
    Theme,
    reduce_state,
)
from resilience.coordinator.store import (
    CoordinatorActions,
    CoordinatorSelectors,
    ResilienceCoordinator,
)

__all__ = [
    "GlobalState",
    "Notification",
    "NotificationKind",
    "RetryQueueItem",
    "Theme",
    "reduce_state",
    "CoordinatorActions",
    "CoordinatorSelectors",
    "ResilienceCoordinator",
]
