"""Error taxonomy for the provider discovery index."""

from uuid import UUID


class DiscoveryError(Exception):
    """Base class for all discovery errors.

    Attributes:
        retryable: Whether the caller may retry the failed operation.
    """

    retryable: bool = False


class SearchValidationError(DiscoveryError):
    """Raised when search input is malformed or out of bounds."""

    def __init__(self, message: str, field: str | None = None) -> None:
        """Initialize validation error.

        Args:
            message: Error description.
            field: Name of the offending input field, if known.
        """
        super().__init__(message)
        self.field = field


class ConflictError(DiscoveryError):
    """Raised when a row for the provider already exists in the index."""

    def __init__(self, provider_id: UUID) -> None:
        """Initialize conflict error.

        Args:
            provider_id: Provider whose row already exists.
        """
        super().__init__(f"Provider {provider_id} is already indexed")
        self.provider_id = provider_id


class StaleEventError(DiscoveryError):
    """Raised internally when an event is not newer than the applied state."""

    def __init__(self, provider_id: UUID, sequence: int, last_sequence: int) -> None:
        """Initialize stale event error.

        Args:
            provider_id: Provider the event belongs to.
            sequence: Sequence number carried by the event.
            last_sequence: Last sequence already applied for the provider.
        """
        super().__init__(
            f"Event {sequence} for provider {provider_id} "
            f"is not newer than {last_sequence}"
        )
        self.provider_id = provider_id
        self.sequence = sequence
        self.last_sequence = last_sequence


class ProviderNotIndexedError(DiscoveryError):
    """Raised when a mutation targets a provider with no index row yet.

    Retryable: the activation that creates the row may still be in flight.
    """

    retryable = True

    def __init__(self, provider_id: UUID) -> None:
        """Initialize not-indexed error.

        Args:
            provider_id: Provider missing from the index.
        """
        super().__init__(f"Provider {provider_id} is not indexed")
        self.provider_id = provider_id


class InvalidEventError(DiscoveryError):
    """Raised when an event would violate a row invariant."""

    def __init__(self, message: str, provider_id: UUID) -> None:
        """Initialize invalid event error.

        Args:
            message: Error description.
            provider_id: Provider the event belongs to.
        """
        super().__init__(message)
        self.provider_id = provider_id


class InfrastructureError(DiscoveryError):
    """Raised when the index storage is unreachable or fails."""

    retryable = True


class SearchTimeoutError(InfrastructureError):
    """Raised when a search query exceeds its deadline."""


class CountUnavailableError(InfrastructureError):
    """Raised when the count query fails after the data query succeeded.

    Attributes:
        items: Ranked rows returned by the successful data query.
    """

    def __init__(self, message: str, items: list[object]) -> None:
        """Initialize count failure.

        Args:
            message: Error description.
            items: Ranked rows already fetched by the data query.
        """
        super().__init__(message)
        self.items = items


class SearchCancelledError(DiscoveryError):
    """Raised when a search is cancelled while its query is running."""
