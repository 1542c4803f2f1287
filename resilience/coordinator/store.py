"""
ResilienceCoordinator - Owner of the global resilience state.

Ties together:
- Notification lifecycle (show one tick later, expire, remove) with dedup
- Retry queue drained when connectivity comes back
- Batched cache invalidation
- Periodic cache sweep (APScheduler interval job)

All timers belong to the coordinator and are cancelled by dispose(); a
timer that was already queued when dispose() ran becomes a no-op.
"""

import asyncio
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable
from uuid import uuid4

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from loguru import logger

from resilience.coordinator.state import (
    AddNotification,
    AddRetryAction,
    CleanupCompleted,
    ClearInvalidationQueue,
    ExpireNotification,
    GlobalState,
    InvalidateKey,
    NetworkChanged,
    Notification,
    NotificationKind,
    RemoveNotification,
    RemoveRetryAction,
    RequeueRetryAction,
    RetryQueueItem,
    SetLoading,
    SetModal,
    SetTheme,
    SetUser,
    SetUserLoading,
    SetUserPreferences,
    ShowNotification,
    Theme,
    ToggleMobileMenu,
    ToggleSidebar,
    UpdateCacheStats,
    initial_state,
    reduce_state,
)
from resilience.services.cache import CacheStats, EphemeralCache, get_primary_cache
from resilience.services.connectivity import ConnectivityMonitor, ConnectivityStatus
from resilience.services.errors import CoordinatorDisposedError
from resilience.settings import Settings, global_settings

StateListener = Callable[[GlobalState], None]


class ResilienceCoordinator:
    """
    Central reducer-driven store.

    Usage:
        async with ResilienceCoordinator(cache) as coordinator:
            coordinator.actions.add_notification("error", "Checkout", "Payment failed")
            coordinator.actions.add_retry_action(lambda: backend.save_cart(cart))

            coordinator.actions.set_network_status(False)
            ...
            coordinator.actions.set_network_status(True)  # drains the queue
    """

    def __init__(
        self,
        cache: EphemeralCache | None = None,
        settings: Settings | None = None,
        clock: Callable[[], datetime] = datetime.now,
        connectivity: ConnectivityMonitor | None = None,
        is_online: bool = True,
    ):
        self._cache = cache if cache is not None else get_primary_cache()
        self._settings = settings or global_settings
        self._clock = clock
        self._connectivity = connectivity
        self._state = initial_state(clock(), is_online=is_online)
        self._listeners: list[StateListener] = []

        self._timers: dict[str, list[asyncio.TimerHandle | asyncio.Handle]] = {}
        self._flush_handle: asyncio.Handle | None = None
        self._drain_tasks: set[asyncio.Task[None]] = set()
        self._draining = False
        self._scheduler: AsyncIOScheduler | None = None
        self._unsubscribe_connectivity: Callable[[], None] | None = None
        self._disposed = False

        self.actions = CoordinatorActions(self)
        self.selectors = CoordinatorSelectors(self)

    @property
    def state(self) -> GlobalState:
        return self._state

    @property
    def disposed(self) -> bool:
        return self._disposed

    def dispatch(self, event: Any) -> GlobalState:
        """Replace the snapshot with reduce_state(snapshot, event)."""
        self._ensure_active()
        previous = self._state
        self._state = reduce_state(previous, event)
        if self._state is not previous:
            self._notify()
        return self._state

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Call ``listener`` with every new snapshot. Returns an unsubscribe callable."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def _notify(self) -> None:
        for listener in list(self._listeners):
            try:
                listener(self._state)
            except Exception:
                logger.exception("State listener failed")

    def _ensure_active(self) -> None:
        if self._disposed:
            raise CoordinatorDisposedError()

    # Timers

    def _fire(self, event: Any) -> None:
        """Timer callback: dispatch unless disposed in the meantime."""
        if self._disposed:
            return
        self.dispatch(event)

    def _track_timer(self, owner: str, handle: asyncio.Handle) -> None:
        self._timers.setdefault(owner, []).append(handle)

    def _cancel_timers(self, owner: str) -> None:
        for handle in self._timers.pop(owner, []):
            handle.cancel()

    def _expire_notification(self, notification_id: str) -> None:
        if self._disposed:
            return
        self.dispatch(ExpireNotification(notification_id))
        loop = asyncio.get_running_loop()
        self._track_timer(
            notification_id,
            loop.call_later(
                self._settings.notification_dismiss_delay,
                self._finish_notification,
                notification_id,
            ),
        )

    def _finish_notification(self, notification_id: str) -> None:
        self._timers.pop(notification_id, None)
        self._fire(RemoveNotification(notification_id))

    def default_duration(self, kind: NotificationKind) -> float:
        return {
            NotificationKind.SUCCESS: self._settings.notification_success_duration,
            NotificationKind.INFO: self._settings.notification_info_duration,
            NotificationKind.WARNING: self._settings.notification_warning_duration,
            NotificationKind.ERROR: self._settings.notification_error_duration,
        }[kind]

    # Retry queue

    def _retry_item(self, item_id: str) -> RetryQueueItem | None:
        return next(
            (i for i in self._state.network.retry_queue if i.id == item_id), None
        )

    def _schedule_drain(self) -> asyncio.Task[None]:
        task = asyncio.ensure_future(self.actions.process_retry_queue())
        self._drain_tasks.add(task)
        task.add_done_callback(self._drain_tasks.discard)
        return task

    # Periodic sweep

    def tick(self) -> bool:
        """
        Periodic sweep: clean the cache if the last cleanup is older than
        the cleanup interval. Returns True if a cleanup ran.
        """
        self._ensure_active()
        interval = timedelta(seconds=self._settings.cache_cleanup_interval_seconds)
        if self._clock() - self._state.cache.last_cleanup_at > interval:
            self.actions.cleanup_cache()
            return True
        return False

    async def _sweep_job(self) -> None:
        if self._disposed:
            return
        try:
            self.tick()
        except Exception as e:
            logger.error(f"Error in scheduled cache sweep: {e}")

    async def _probe_job(self) -> None:
        if self._disposed or self._connectivity is None:
            return
        try:
            await self._connectivity.check()
        except Exception as e:
            logger.error(f"Error in scheduled connectivity probe: {e}")

    def _on_connectivity(self, status: ConnectivityStatus) -> None:
        if self._disposed:
            return
        self.actions.set_network_status(status.is_online, status.is_slow_connection)

    # Lifecycle

    def start(self) -> None:
        """Start the periodic jobs. Must be called on the running event loop."""
        self._ensure_active()
        if self._scheduler is not None:
            logger.warning("Resilience coordinator is already running")
            return

        self._scheduler = AsyncIOScheduler(event_loop=asyncio.get_running_loop())
        sweep_interval = self._settings.cache_sweep_interval_seconds
        self._scheduler.add_job(
            self._sweep_job,
            trigger="interval",
            seconds=sweep_interval,
            id="cache_sweep_job",
            name="Cache Sweep",
            replace_existing=True,
        )

        if self._connectivity is not None:
            self._unsubscribe_connectivity = self._connectivity.subscribe(
                self._on_connectivity
            )
            self._scheduler.add_job(
                self._probe_job,
                trigger="interval",
                seconds=self._settings.connectivity_probe_interval_seconds,
                id="connectivity_probe_job",
                name="Connectivity Probe",
                replace_existing=True,
            )

        self._scheduler.start()
        logger.info(f"Resilience coordinator started: sweeping every {sweep_interval}s")

    def is_running(self) -> bool:
        return self._scheduler is not None and not self._disposed

    def dispose(self) -> None:
        """Cancel every timer, pending flush, drain and scheduled job."""
        if self._disposed:
            return
        self._disposed = True

        timer_count = sum(len(handles) for handles in self._timers.values())
        for owner in list(self._timers):
            self._cancel_timers(owner)

        if self._flush_handle is not None:
            self._flush_handle.cancel()
            self._flush_handle = None

        for task in list(self._drain_tasks):
            task.cancel()
        self._drain_tasks.clear()

        if self._unsubscribe_connectivity is not None:
            self._unsubscribe_connectivity()
            self._unsubscribe_connectivity = None

        if self._scheduler is not None:
            self._scheduler.shutdown(wait=False)
            self._scheduler = None

        self._listeners.clear()
        logger.info(f"Resilience coordinator disposed ({timer_count} timers cancelled)")

    async def __aenter__(self) -> "ResilienceCoordinator":
        self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        self.dispose()


class CoordinatorActions:
    """State-changing operations of a ResilienceCoordinator."""

    def __init__(self, coordinator: ResilienceCoordinator):
        self._c = coordinator

    # User

    def set_user(self, user: Any) -> None:
        self._c.dispatch(SetUser(user))

    def set_user_loading(self, loading: bool) -> None:
        self._c.dispatch(SetUserLoading(loading))

    def set_user_preferences(self, preferences: dict[str, Any]) -> None:
        self._c.dispatch(SetUserPreferences(dict(preferences)))

    # UI

    def set_theme(self, theme: Theme | str) -> None:
        self._c.dispatch(SetTheme(Theme(theme)))

    def toggle_sidebar(self) -> None:
        self._c.dispatch(ToggleSidebar())

    def toggle_mobile_menu(self) -> None:
        self._c.dispatch(ToggleMobileMenu())

    def set_modal(self, modal_id: str, is_open: bool) -> None:
        self._c.dispatch(SetModal(modal_id, is_open))

    def set_loading(self, key: str, loading: bool) -> None:
        self._c.dispatch(SetLoading(key, loading))

    def add_notification(
        self,
        kind: NotificationKind | str,
        title: str,
        message: str,
        duration: float | None = None,
    ) -> str:
        """
        Queue a notification and start its lifecycle timers.

        A notification with the same kind, title and message created within
        the dedup window is not added again; its id is returned instead.
        Must be called on the running event loop.
        """
        c = self._c
        c._ensure_active()
        kind = NotificationKind(kind)
        now = c._clock()

        window = timedelta(seconds=c._settings.notification_dedup_window)
        for existing in c.state.ui.notifications:
            if existing.same_content(kind, title, message) and now - existing.created_at < window:
                logger.debug(f"Suppressed duplicate notification: {title}")
                return existing.id

        notification = Notification(
            id=f"notification_{uuid4().hex[:12]}",
            kind=kind,
            title=title,
            message=message,
            created_at=now,
            duration=c.default_duration(kind) if duration is None else duration,
        )
        c.dispatch(AddNotification(notification))

        loop = asyncio.get_running_loop()
        c._track_timer(
            notification.id, loop.call_soon(c._fire, ShowNotification(notification.id))
        )
        c._track_timer(
            notification.id,
            loop.call_later(notification.duration, c._expire_notification, notification.id),
        )
        return notification.id

    def remove_notification(self, notification_id: str) -> None:
        self._c._cancel_timers(notification_id)
        self._c.dispatch(RemoveNotification(notification_id))

    # Network

    def set_network_status(
        self, is_online: bool, is_slow_connection: bool = False
    ) -> asyncio.Task[None] | None:
        """
        Update connectivity flags. Coming back online with a non-empty
        retry queue schedules a drain, whose task is returned.
        """
        c = self._c
        was_online = c.state.network.is_online
        c.dispatch(NetworkChanged(is_online, is_slow_connection))

        if is_online and not was_online and c.state.network.retry_queue:
            logger.info(
                f"Back online, draining {len(c.state.network.retry_queue)} queued actions"
            )
            return c._schedule_drain()
        return None

    def add_retry_action(
        self,
        action: Callable[[], Awaitable[Any]],
        max_attempts: int | None = None,
    ) -> str:
        """Defer ``action`` until the next drain. Returns the queue item id."""
        c = self._c
        item = RetryQueueItem(
            id=f"retry_{uuid4().hex[:12]}",
            action=action,
            max_attempts=(
                c._settings.retry_queue_max_attempts
                if max_attempts is None
                else max_attempts
            ),
        )
        c.dispatch(AddRetryAction(item))
        return item.id

    def remove_retry_action(self, item_id: str) -> None:
        self._c.dispatch(RemoveRetryAction(item_id))

    async def process_retry_queue(self) -> None:
        """
        Drain the retry queue once.

        Items are taken in the order captured when the drain starts; items
        queued during the drain wait for the next one. Failures re-enqueue
        the item until its attempts run out, then it is dropped. Nothing
        raised by an action escapes.
        """
        c = self._c
        c._ensure_active()
        if c._draining:
            logger.debug("Retry queue drain already in progress, skipping")
            return

        c._draining = True
        try:
            for captured in c.state.network.retry_queue:
                if c._disposed:
                    break
                item = c._retry_item(captured.id)
                if item is None:
                    continue

                try:
                    await item.action()
                except Exception as e:
                    if c._disposed:
                        break
                    if item.attempts_made + 1 < item.max_attempts:
                        logger.debug(
                            f"Retry action {item.id} failed "
                            f"({item.attempts_made + 1}/{item.max_attempts}): {e}"
                        )
                        c.dispatch(RequeueRetryAction(item.id))
                    else:
                        logger.warning(
                            f"Dropping retry action {item.id} after "
                            f"{item.max_attempts} attempts: {e}"
                        )
                        c.dispatch(RemoveRetryAction(item.id))
                else:
                    if c._disposed:
                        break
                    c.dispatch(RemoveRetryAction(item.id))
        finally:
            c._draining = False

    # Cache

    def update_cache_stats(self, stats: CacheStats) -> None:
        self._c.dispatch(UpdateCacheStats(stats))

    def invalidate_cache(self, key: str) -> None:
        """
        Queue a key (or glob pattern) for invalidation. Keys queued in the
        same loop iteration are flushed together on the next one.
        """
        c = self._c
        c.dispatch(InvalidateKey(key))
        if c._flush_handle is None:
            loop = asyncio.get_running_loop()
            c._flush_handle = loop.call_soon(self._scheduled_flush)

    def _scheduled_flush(self) -> None:
        self._c._flush_handle = None
        if self._c.disposed:
            return
        self.process_cache_invalidation()

    def process_cache_invalidation(self) -> int:
        """Apply every queued invalidation as one batch. Returns entries removed."""
        c = self._c
        c._ensure_active()
        if c._flush_handle is not None:
            c._flush_handle.cancel()
            c._flush_handle = None

        queue = c.state.cache.invalidation_queue
        if not queue:
            return 0

        removed = 0
        for key in dict.fromkeys(queue):
            if "*" in key:
                removed += c._cache.invalidate_pattern(key)
            elif c._cache.delete(key):
                removed += 1

        c.dispatch(ClearInvalidationQueue())
        logger.debug(f"Flushed {len(queue)} cache invalidations, {removed} entries removed")
        return removed

    def cleanup_cache(self) -> int:
        """Clean expired entries, republish stats and record the cleanup time."""
        c = self._c
        removed = c._cache.cleanup()
        c.dispatch(CleanupCompleted(at=c._clock(), stats=c._cache.get_stats()))
        logger.debug(f"Cache cleanup removed {removed} expired entries")
        return removed


class CoordinatorSelectors:
    """Read-only views over a ResilienceCoordinator's current snapshot."""

    def __init__(self, coordinator: ResilienceCoordinator):
        self._c = coordinator

    def is_authenticated(self) -> bool:
        return self._c.state.user.is_authenticated

    def get_current_user(self) -> Any:
        return self._c.state.user.current_user

    def get_theme(self) -> Theme:
        return self._c.state.ui.theme

    def is_loading(self, key: str) -> bool:
        return self._c.state.ui.loading.get(key, False)

    def get_notifications(self) -> tuple[Notification, ...]:
        return self._c.state.ui.notifications

    def is_modal_open(self, modal_id: str) -> bool:
        return self._c.state.ui.modals.get(modal_id, False)

    def get_network_status(self) -> ConnectivityStatus:
        network = self._c.state.network
        return ConnectivityStatus(
            is_online=network.is_online,
            is_slow_connection=network.is_slow_connection,
        )

    def get_cache_stats(self) -> CacheStats:
        return self._c.state.cache.stats

    def get_retry_queue(self) -> tuple[RetryQueueItem, ...]:
        return self._c.state.network.retry_queue
