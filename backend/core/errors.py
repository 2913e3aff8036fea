"""Domain exceptions raised by the fleet health engine."""


class FleetPulseError(Exception):
    """Base class for engine errors."""


class NotFoundError(FleetPulseError, LookupError):
    """Raised when a referenced entity does not exist."""

    entity = "Entity"

    def __init__(self, entity_id):
        self.entity_id = entity_id
        super().__init__(f"{self.entity} {entity_id} not found")


class ForkliftNotFoundError(NotFoundError):
    entity = "Forklift"


class AlertNotFoundError(NotFoundError):
    entity = "Alert"


class ReadingNotFoundError(NotFoundError):
    entity = "Reading"


class WebhookNotFoundError(NotFoundError):
    entity = "Webhook"


class InvalidReadingError(FleetPulseError, ValueError):
    """Raised for malformed readings or illegal correction attempts."""


class InvalidTransitionError(FleetPulseError, ValueError):
    """Raised when an alert lifecycle transition is not allowed from its current state."""


class DeliveryError(FleetPulseError):
    """Raised by notification workers when an outbound delivery attempt fails."""
