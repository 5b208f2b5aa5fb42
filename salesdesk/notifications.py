"""User-visible notifications raised by page controllers."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Callable, List, Optional


class Variant(str, Enum):
    DEFAULT = "default"
    WARNING = "warning"
    DESTRUCTIVE = "destructive"


@dataclass(frozen=True)
class Notification:
    title: str
    description: str
    variant: Variant = Variant.DEFAULT


Listener = Callable[[Notification], None]


class Notifier:
    """Collects notifications and forwards them to subscribed presenters."""

    def __init__(self) -> None:
        self.history: List[Notification] = []
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def notify(self, title: str, description: str, variant: Variant = Variant.DEFAULT) -> Notification:
        notification = Notification(title=title, description=description, variant=variant)
        self.history.append(notification)
        for listener in list(self._listeners):
            listener(notification)
        return notification

    def success(self, description: str) -> Notification:
        return self.notify("Success", description)

    def warning(self, description: str) -> Notification:
        return self.notify("Warning", description, Variant.WARNING)

    def error(self, description: str) -> Notification:
        return self.notify("Error", description, Variant.DESTRUCTIVE)

    @property
    def last(self) -> Optional[Notification]:
        return self.history[-1] if self.history else None
