"""Custom exceptions for the dispatch and booking services."""


class MarketplaceError(Exception):
    """Base class for errors raised by the service layer."""

    def __init__(self, message="", details=None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


# ===================== Taxonomy =====================

class ValidationError(MarketplaceError):
    """Raised for malformed input, before any state change."""
    pass


class NotFoundError(MarketplaceError):
    """Raised when a referenced booking, driver or zone does not exist."""
    pass


class ConflictError(MarketplaceError):
    """Raised when a guard condition fails. The caller may retry."""
    pass


class NoCandidateError(MarketplaceError):
    """Raised internally when matching has exhausted every escalation step."""
    pass


class DependencyError(MarketplaceError):
    """Raised when the data store (or another collaborator) fails."""
    pass


# ===================== Validation =====================

class RouteNotServicedError(ValidationError):
    """Raised when pickup and dropoff cannot be matched across zones."""
    pass


# ===================== Not found =====================

class BookingNotFoundError(NotFoundError):
    """Raised when a booking cannot be found."""
    pass


class DriverNotFoundError(NotFoundError):
    """Raised when a driver profile cannot be found."""
    pass


class ZoneNotFoundError(NotFoundError):
    """Raised when a service zone cannot be found."""
    pass


# ===================== Conflicts =====================

class BookingNotAvailableError(ConflictError):
    """Raised when a booking is no longer open for the operation."""
    pass


class InvalidTransitionError(ConflictError):
    """Raised when the booking is not in a valid predecessor state."""
    pass


class NotAssignedDriverError(ConflictError):
    """Raised when the acting driver is not the one assigned to the booking."""
    pass


class DriverNotAvailableError(ConflictError):
    """Raised when driver is not available to accept bookings."""
    pass


class DriverTooFarError(ConflictError):
    """Raised when the driver is outside the acceptance radius."""
    pass


class OfferNotFoundError(ConflictError):
    """Raised when the driver holds no active offer for the booking."""
    pass


class OfferExpiredError(ConflictError):
    """Raised when the driver's offer for the booking has timed out."""
    pass


class ActiveBookingLimitError(ConflictError):
    """Raised when the requester already has too many active bookings."""
    pass


class StaleDispatchRoundError(ConflictError):
    """Raised when a dispatch round was superseded before it could start."""
    pass


class ApprovalRequiredError(ConflictError):
    """Raised when an approval-gated booking is acted on before approval."""
    pass
