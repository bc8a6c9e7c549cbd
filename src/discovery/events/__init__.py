"""Provider lifecycle events and the in-process transport carrying them."""
from discovery.events.bus import Delivery, EventBus
from discovery.events.types import (
    EventType,
    ProviderActivated,
    ProviderDeactivated,
    ProviderDeleted,
    ProviderEvent,
    ProviderLocationChanged,
    ProviderProfileUpdated,
    ProviderRatingChanged,
    ProviderServiceAdded,
    ProviderServiceRemoved,
    ProviderTierChanged,
    provider_event_adapter,
)

__all__ = [
    "Delivery",
    "EventBus",
    "EventType",
    "ProviderActivated",
    "ProviderDeactivated",
    "ProviderDeleted",
    "ProviderEvent",
    "ProviderLocationChanged",
    "ProviderProfileUpdated",
    "ProviderRatingChanged",
    "ProviderServiceAdded",
    "ProviderServiceRemoved",
    "ProviderTierChanged",
    "provider_event_adapter",
]
