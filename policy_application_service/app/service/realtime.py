# Realtime Sync Bridge: change feed -> dashboard refetch
import logging
from typing import Awaitable, Callable, Optional, Tuple

from policy_application_service.app.models import ChangeEvent, ChangeTable
from policy_application_service.app.service.dashboard import DashboardView
from policy_application_service.app.service.interfaces.change_feed import AbstractChangeFeed, ChangeSubscription

logger = logging.getLogger(__name__)

RefreshCallback = Callable[[], Awaitable[None]]

WATCHED_TABLES = (ChangeTable.POLICIES, ChangeTable.POLICY_SHARES)


class RealtimeSyncBridge:
    def __init__(self, change_feed: AbstractChangeFeed):
        self.change_feed = change_feed
        self._subscription: Optional[ChangeSubscription] = None
        self._bound_to: Optional[Tuple[str, DashboardView]] = None
        self._refresh: Optional[RefreshCallback] = None

    @property
    def bound_to(self) -> Optional[Tuple[str, DashboardView]]:
        return self._bound_to

    def bind(self, identity_id: str, view: DashboardView, refresh: RefreshCallback) -> bool:
        """
        Ties the subscription to an identity and a dashboard view.

        Re-binding to the same pair keeps the current subscription. A different
        identity or view tears it down and subscribes again. Returns True when a
        new subscription was made.
        """
        key = (identity_id, DashboardView(view))
        if self._bound_to == key and self._subscription is not None:
            self._refresh = refresh
            return False

        self.unbind()
        self._refresh = refresh
        self._subscription = self.change_feed.subscribe(WATCHED_TABLES, self._on_change)
        self._bound_to = key
        logger.info(f"Realtime sync bound for {identity_id} on view '{key[1].value}'.")
        return True

    def unbind(self) -> None:
        if self._subscription is not None:
            self._subscription.close()
            logger.info(f"Realtime sync unbound for {self._bound_to[0] if self._bound_to else 'unknown'}.")
        self._subscription = None
        self._bound_to = None
        self._refresh = None

    async def _on_change(self, event: ChangeEvent):
        # Any change means a full refetch; events carry no diff to patch with.
        logger.debug(f"Change on {event.table.value} ({event.operation.value}); refreshing dashboard.")
        if self._refresh is not None:
            await self._refresh()
