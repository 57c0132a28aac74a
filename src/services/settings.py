"""
Runtime-editable calendar settings, published on every write.
"""

from typing import Any, Callable

from core.events import SETTINGS_CHANGED, EventBus
from models.calendar import CalendarSettings


class CalendarSettingsStore:
    """Holds the current CalendarSettings; subscribers get each new value."""

    def __init__(self, bus: EventBus, settings: CalendarSettings | None = None):
        self._bus = bus
        self._settings = settings or CalendarSettings()

    @property
    def current(self) -> CalendarSettings:
        return self._settings

    def update(self, **changes: Any) -> CalendarSettings:
        """
        Validate and apply changes, then publish the new settings.

        Raises pydantic.ValidationError (nothing is published) if the result
        is invalid.
        """
        settings = CalendarSettings.model_validate({**self._settings.model_dump(), **changes})
        if settings != self._settings:
            self._settings = settings
            self._bus.publish(SETTINGS_CHANGED, settings)
        return settings

    def reset(self) -> CalendarSettings:
        self._settings = CalendarSettings()
        self._bus.publish(SETTINGS_CHANGED, self._settings)
        return self._settings

    def subscribe(self, handler: Callable[[CalendarSettings], None]) -> Callable[[], None]:
        return self._bus.subscribe(SETTINGS_CHANGED, handler)
