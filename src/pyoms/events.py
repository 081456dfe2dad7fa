"""
Event channels published by the spiderfier.

Four channels, each with its own listener signature:
- click: (marker, event) - a marker was clicked and nothing spiderfied
- spiderfy: (spiderfied_markers, non_nearby_markers) - a cluster fanned out
- unspiderfy: (unspiderfied_markers, non_nearby_markers) - a cluster collapsed
- format: (marker, status) - a marker's MarkerStatus should be (re)applied
"""

from __future__ import annotations

from typing import Any, Callable, Literal, Union, overload
from enum import Enum, IntEnum
import logging

logger = logging.getLogger(__name__)


class EventType(IntEnum):
    """Channels of the event bus."""
    click = 0
    spiderfy = 1
    unspiderfy = 2
    format = 3


class MarkerStatus(str, Enum):
    """
    Display status reported on the format channel.

    SPIDERFIED is reported in both regimes. SPIDERFIABLE and UNSPIDERFIABLE
    are reported under the standard regime; UNSPIDERFIED only under basic
    format events.
    """
    SPIDERFIED = 'SPIDERFIED'
    SPIDERFIABLE = 'SPIDERFIABLE'
    UNSPIDERFIABLE = 'UNSPIDERFIABLE'
    UNSPIDERFIED = 'UNSPIDERFIED'


ClickListener = Callable[[Any, Any], Any]
SpiderfyListener = Callable[[list, list], Any]
UnspiderfyListener = Callable[[list, list], Any]
FormatListener = Callable[[Any, MarkerStatus], Any]

Channel = Union[EventType, str]


def to_event_type(channel: Channel) -> EventType:
    """
    Resolve a channel given as EventType or name.

    Raises:
        KeyError: If the name is not a channel
    """
    if isinstance(channel, EventType):
        return channel
    return EventType[channel]


class EventBus:
    """
    Named-channel publish/subscribe.

    Listeners run synchronously, in registration order.
    """

    def __init__(self):
        self._listeners: dict[EventType, list[Callable[..., Any]]] = {e: [] for e in EventType}

    @overload
    def subscribe(self, channel: Literal[EventType.click, 'click'], listener: ClickListener) -> EventBus: ...

    @overload
    def subscribe(self, channel: Literal[EventType.spiderfy, 'spiderfy'], listener: SpiderfyListener) -> EventBus: ...

    @overload
    def subscribe(self, channel: Literal[EventType.unspiderfy, 'unspiderfy'], listener: UnspiderfyListener) -> EventBus: ...

    @overload
    def subscribe(self, channel: Literal[EventType.format, 'format'], listener: FormatListener) -> EventBus: ...

    def subscribe(self, channel: Channel, listener: Callable[..., Any]) -> EventBus:
        """
        Add a listener to a channel.

        Args:
            channel: EventType or channel name
            listener: Function with the channel's signature

        Returns:
            self for method chaining
        """
        self._listeners[to_event_type(channel)].append(listener)
        return self

    def unsubscribe(self, channel: Channel, listener: Callable[..., Any]) -> EventBus:
        """Remove the first registration of listener (compared by identity)."""
        listeners = self._listeners[to_event_type(channel)]
        for i, registered in enumerate(listeners):
            if registered is listener:
                del listeners[i]
                break
        return self

    def clear(self, channel: Channel) -> EventBus:
        """Remove every listener from a channel."""
        self._listeners[to_event_type(channel)] = []
        return self

    def listeners(self, channel: Channel) -> list[Callable[..., Any]]:
        """Snapshot of a channel's listeners."""
        return list(self._listeners[to_event_type(channel)])

    def publish(self, channel: Channel, *args: Any) -> list[Any]:
        """
        Call every listener of a channel with args.

        Listeners added or removed while publishing take effect from the
        next publish.

        Returns:
            Listener return values, in call order
        """
        event_type = to_event_type(channel)
        listeners = list(self._listeners[event_type])
        logger.debug("publish %s to %d listener(s)", event_type.name, len(listeners))
        return [listener(*args) for listener in listeners]
