"""Exceptions raised by the settlement core."""


class SettlementError(Exception):
    """Base exception for settlement errors."""

    pass


class InvalidFrequencyError(SettlementError, ValueError):
    """Raised when a billing frequency string is not recognised."""

    def __init__(self, frequency: str):
        super().__init__(f"Unknown billing frequency: {frequency}")
        self.frequency = frequency


class MissingRateError(SettlementError):
    """Raised when a mandatory regulated rate is absent for a period."""

    def __init__(self, message: str, rate_type: str):
        super().__init__(message)
        self.rate_type = rate_type


class InvalidTransitionError(SettlementError):
    """Raised when a process lifecycle transition is not allowed."""

    def __init__(self, current: str, event: str):
        super().__init__(f"Invalid transition from '{current}' on event '{event}'")
        self.current = current
        self.event = event


class NoMeteringChangesError(SettlementError):
    """Raised when a correction is requested but no readings were revised."""

    pass
