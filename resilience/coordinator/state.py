"""
Global resilience state and its reducer.

The whole state is one immutable GlobalState snapshot. Every event produces
a new snapshot through reduce_state(); nothing mutates a snapshot in place.
"""

from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Any, Awaitable, Callable

from resilience.services.cache import CacheStats


class NotificationKind(str, Enum):
    """Notification severities."""

    SUCCESS = "success"
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class Theme(str, Enum):
    LIGHT = "light"
    DARK = "dark"


@dataclass(frozen=True)
class Notification:
    """A queued user-facing notification."""

    id: str
    kind: NotificationKind
    title: str
    message: str
    created_at: datetime
    duration: float
    visible: bool = False
    dismissing: bool = False

    def same_content(self, kind: NotificationKind, title: str, message: str) -> bool:
        return (self.kind, self.title, self.message) == (kind, title, message)


@dataclass(frozen=True)
class RetryQueueItem:
    """A deferred action waiting for the next drain."""

    id: str
    action: Callable[[], Awaitable[Any]]
    attempts_made: int = 0
    max_attempts: int = 3


@dataclass(frozen=True)
class UserState:
    current_user: Any = None
    is_authenticated: bool = False
    loading: bool = False
    preferences: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class UiState:
    theme: Theme = Theme.LIGHT
    sidebar_open: bool = False
    mobile_menu_open: bool = False
    notifications: tuple[Notification, ...] = ()
    modals: dict[str, bool] = field(default_factory=dict)
    loading: dict[str, bool] = field(default_factory=dict)


@dataclass(frozen=True)
class NetworkState:
    is_online: bool = True
    is_slow_connection: bool = False
    retry_queue: tuple[RetryQueueItem, ...] = ()


@dataclass(frozen=True)
class CacheState:
    last_cleanup_at: datetime
    invalidation_queue: tuple[str, ...] = ()
    stats: CacheStats = field(default_factory=CacheStats)


@dataclass(frozen=True)
class GlobalState:
    cache: CacheState
    user: UserState = field(default_factory=UserState)
    ui: UiState = field(default_factory=UiState)
    network: NetworkState = field(default_factory=NetworkState)


def initial_state(now: datetime, is_online: bool = True) -> GlobalState:
    return GlobalState(
        cache=CacheState(last_cleanup_at=now),
        network=NetworkState(is_online=is_online),
    )


# Events


@dataclass(frozen=True)
class SetUser:
    user: Any


@dataclass(frozen=True)
class SetUserLoading:
    loading: bool


@dataclass(frozen=True)
class SetUserPreferences:
    preferences: dict[str, Any]


@dataclass(frozen=True)
class SetTheme:
    theme: Theme


@dataclass(frozen=True)
class ToggleSidebar:
    pass


@dataclass(frozen=True)
class ToggleMobileMenu:
    pass


@dataclass(frozen=True)
class SetModal:
    modal_id: str
    is_open: bool


@dataclass(frozen=True)
class SetLoading:
    key: str
    loading: bool


@dataclass(frozen=True)
class AddNotification:
    notification: Notification


@dataclass(frozen=True)
class ShowNotification:
    id: str


@dataclass(frozen=True)
class ExpireNotification:
    id: str


@dataclass(frozen=True)
class RemoveNotification:
    id: str


@dataclass(frozen=True)
class NetworkChanged:
    is_online: bool
    is_slow_connection: bool = False


@dataclass(frozen=True)
class AddRetryAction:
    item: RetryQueueItem


@dataclass(frozen=True)
class RemoveRetryAction:
    id: str


@dataclass(frozen=True)
class RequeueRetryAction:
    """Move an item to the tail of the queue with one more attempt counted."""

    id: str


@dataclass(frozen=True)
class UpdateCacheStats:
    stats: CacheStats


@dataclass(frozen=True)
class CleanupCompleted:
    at: datetime
    stats: CacheStats


@dataclass(frozen=True)
class InvalidateKey:
    key: str


@dataclass(frozen=True)
class ClearInvalidationQueue:
    pass


# Reducer

_HANDLERS: dict[type, Callable[[GlobalState, Any], GlobalState]] = {}


def _handles(event_type: type):
    def register(fn):
        _HANDLERS[event_type] = fn
        return fn

    return register


def reduce_state(state: GlobalState, event: Any) -> GlobalState:
    """Apply one event. Unknown events leave the state unchanged."""
    handler = _HANDLERS.get(type(event))
    if handler is None:
        return state
    return handler(state, event)


def _with_ui(state: GlobalState, **changes: Any) -> GlobalState:
    return replace(state, ui=replace(state.ui, **changes))


def _with_network(state: GlobalState, **changes: Any) -> GlobalState:
    return replace(state, network=replace(state.network, **changes))


def _with_cache(state: GlobalState, **changes: Any) -> GlobalState:
    return replace(state, cache=replace(state.cache, **changes))


def _update_notification(state: GlobalState, notification_id: str, **changes: Any) -> GlobalState:
    notifications = tuple(
        replace(n, **changes) if n.id == notification_id else n
        for n in state.ui.notifications
    )
    return _with_ui(state, notifications=notifications)


@_handles(SetUser)
def _set_user(state: GlobalState, event: SetUser) -> GlobalState:
    user = replace(
        state.user,
        current_user=event.user,
        is_authenticated=event.user is not None,
        loading=False,
    )
    return replace(state, user=user)


@_handles(SetUserLoading)
def _set_user_loading(state: GlobalState, event: SetUserLoading) -> GlobalState:
    return replace(state, user=replace(state.user, loading=event.loading))


@_handles(SetUserPreferences)
def _set_user_preferences(state: GlobalState, event: SetUserPreferences) -> GlobalState:
    preferences = {**state.user.preferences, **event.preferences}
    return replace(state, user=replace(state.user, preferences=preferences))


@_handles(SetTheme)
def _set_theme(state: GlobalState, event: SetTheme) -> GlobalState:
    return _with_ui(state, theme=event.theme)


@_handles(ToggleSidebar)
def _toggle_sidebar(state: GlobalState, event: ToggleSidebar) -> GlobalState:
    return _with_ui(state, sidebar_open=not state.ui.sidebar_open)


@_handles(ToggleMobileMenu)
def _toggle_mobile_menu(state: GlobalState, event: ToggleMobileMenu) -> GlobalState:
    return _with_ui(state, mobile_menu_open=not state.ui.mobile_menu_open)


@_handles(SetModal)
def _set_modal(state: GlobalState, event: SetModal) -> GlobalState:
    return _with_ui(state, modals={**state.ui.modals, event.modal_id: event.is_open})


@_handles(SetLoading)
def _set_loading(state: GlobalState, event: SetLoading) -> GlobalState:
    return _with_ui(state, loading={**state.ui.loading, event.key: event.loading})


@_handles(AddNotification)
def _add_notification(state: GlobalState, event: AddNotification) -> GlobalState:
    return _with_ui(state, notifications=state.ui.notifications + (event.notification,))


@_handles(ShowNotification)
def _show_notification(state: GlobalState, event: ShowNotification) -> GlobalState:
    return _update_notification(state, event.id, visible=True)


@_handles(ExpireNotification)
def _expire_notification(state: GlobalState, event: ExpireNotification) -> GlobalState:
    return _update_notification(state, event.id, dismissing=True)


@_handles(RemoveNotification)
def _remove_notification(state: GlobalState, event: RemoveNotification) -> GlobalState:
    notifications = tuple(n for n in state.ui.notifications if n.id != event.id)
    return _with_ui(state, notifications=notifications)


@_handles(NetworkChanged)
def _network_changed(state: GlobalState, event: NetworkChanged) -> GlobalState:
    return _with_network(
        state,
        is_online=event.is_online,
        is_slow_connection=event.is_slow_connection,
    )


@_handles(AddRetryAction)
def _add_retry_action(state: GlobalState, event: AddRetryAction) -> GlobalState:
    return _with_network(state, retry_queue=state.network.retry_queue + (event.item,))


@_handles(RemoveRetryAction)
def _remove_retry_action(state: GlobalState, event: RemoveRetryAction) -> GlobalState:
    queue = tuple(item for item in state.network.retry_queue if item.id != event.id)
    return _with_network(state, retry_queue=queue)


@_handles(RequeueRetryAction)
def _requeue_retry_action(state: GlobalState, event: RequeueRetryAction) -> GlobalState:
    queue = state.network.retry_queue
    item = next((i for i in queue if i.id == event.id), None)
    if item is None:
        return state
    rest = tuple(i for i in queue if i.id != event.id)
    bumped = replace(item, attempts_made=item.attempts_made + 1)
    return _with_network(state, retry_queue=rest + (bumped,))


@_handles(UpdateCacheStats)
def _update_cache_stats(state: GlobalState, event: UpdateCacheStats) -> GlobalState:
    return _with_cache(state, stats=event.stats)


@_handles(CleanupCompleted)
def _cleanup_completed(state: GlobalState, event: CleanupCompleted) -> GlobalState:
    return _with_cache(state, stats=event.stats, last_cleanup_at=event.at)


@_handles(InvalidateKey)
def _invalidate_key(state: GlobalState, event: InvalidateKey) -> GlobalState:
    return _with_cache(
        state, invalidation_queue=state.cache.invalidation_queue + (event.key,)
    )


@_handles(ClearInvalidationQueue)
def _clear_invalidation_queue(state: GlobalState, event: ClearInvalidationQueue) -> GlobalState:
    return _with_cache(state, invalidation_queue=())
