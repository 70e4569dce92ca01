class TrackerError(Exception):
    """Base exception for the QR presence tracker."""


class ConfigurationError(TrackerError):
    """Raised when configuration values are missing or invalid."""


class ResolutionError(ConfigurationError):
    """Raised when a resolution entry cannot be trusted on this machine."""


class CameraError(TrackerError):
    """Raised when a camera cannot be opened or bound."""


class LedgerError(TrackerError):
    """Raised when the event ledger cannot be read."""


class LedgerWriteError(LedgerError):
    """Raised when an event could not be durably appended."""
