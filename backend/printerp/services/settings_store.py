"""Observable holder for the signed-in user's settings."""

import logging
from typing import Callable

from printerp.schemas.auth import UserSettings

logger = logging.getLogger(__name__)

Subscriber = Callable[[UserSettings], None]


class SettingsStore:
    def __init__(self, initial: UserSettings | None = None):
        self._settings = initial or UserSettings()
        self._subscribers: list[Subscriber] = []

    def get(self) -> UserSettings:
        return self._settings.model_copy(deep=True)

    def subscribe(self, callback: Subscriber) -> Callable[[], None]:
        self._subscribers.append(callback)

        def unsubscribe():
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return unsubscribe

    def update(self, **changes) -> UserSettings:
        """Apply field changes. Raises pydantic.ValidationError on bad values."""
        merged = self._settings.model_dump() | changes
        return self.replace(UserSettings.model_validate(merged))

    def replace(self, settings: UserSettings) -> UserSettings:
        if settings != self._settings:
            self._settings = settings.model_copy(deep=True)
            self._notify()
        return self.get()

    def reset(self) -> UserSettings:
        return self.replace(UserSettings())

    def _notify(self) -> None:
        for callback in list(self._subscribers):
            try:
                callback(self.get())
            except Exception:
                logger.exception("Settings subscriber failed")
