"""
Error hierarchy for Voicify.

All failures are local and non-fatal. They are raised inside the recorder,
replay engine and catalog store and converted into boolean results or a
``PlaybackResult`` at the service boundary.
"""


class VoicifyError(Exception):
    """Base exception for Voicify errors."""

    def __init__(self, message: str, action_index: int = -1):
        self.action_index = action_index
        super().__init__(message)


class ExtractionError(VoicifyError):
    """Raised when a PlaybackAction cannot be built from a captured event."""
    pass


class NoForegroundContextError(VoicifyError):
    """Raised when no root node is available for replay."""
    pass


class LocationError(VoicifyError):
    """Raised when no strategy could locate the target of an action."""
    pass


class OutputUnavailableError(VoicifyError):
    """Raised when the announcement subsystem is not ready."""
    pass


class PersistenceError(VoicifyError):
    """Raised when the demonstration catalog cannot be saved or exported."""
    pass


class DeviceError(VoicifyError):
    """Raised when the Android device cannot be reached or returns an error."""
    pass
