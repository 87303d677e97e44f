"""
Error types for the ETF investing assistant.

Every error the trading engine raises derives from EtfPilotError so callers
(the CLI in particular) can report engine failures uniformly.
"""


class EtfPilotError(Exception):
    """Base class for all engine errors."""
    pass


class ValidationError(EtfPilotError):
    """Raised for bad input such as an amount below the minimum or a missing date."""
    pass


class PolicyError(EtfPilotError):
    """Raised when an operation is not allowed in the current state."""
    pass


class InsufficientBudgetError(EtfPilotError):
    """
    Raised when the available budget cannot cover the requested action.

    Attributes:
        available: Amount available at the time of the check
        required: Amount the action needed
    """

    def __init__(self, message: str, available=None, required=None):
        super().__init__(message)
        self.available = available
        self.required = required


class RepositoryError(EtfPilotError):
    """Raised when the external store fails to read or write a record."""
    pass


class OperationCancelled(EtfPilotError):
    """Raised when a long-running import or ranking is cancelled."""
    pass
