from abc import ABC, abstractmethod
from typing import Awaitable, Callable, Iterable

from policy_application_service.app.models import ChangeEvent, ChangeTable

ChangeListener = Callable[[ChangeEvent], Awaitable[None]]


class ChangeSubscription(ABC):
    @abstractmethod
    def close(self) -> None:
        """Stops delivery to the listener. Closing twice is harmless."""
        pass


class AbstractChangeFeed(ABC):
    @abstractmethod
    def subscribe(self, tables: Iterable[ChangeTable], listener: ChangeListener) -> ChangeSubscription:
        """
        Registers a listener for change events on the given tables.

        Args:
            tables: Tables whose inserts, updates and deletes the listener receives.
            listener: Coroutine function called once per matching event.

        Returns:
            A handle whose close() ends the subscription.
        """
        pass
