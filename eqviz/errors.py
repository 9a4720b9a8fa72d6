"""Erreurs du pipeline: acquisition du micro et mauvaise configuration."""
from enum import Enum


class AcquisitionReason(Enum):
    PERMISSION_DENIED = "permission-denied"
    DEVICE_NOT_FOUND = "device-not-found"
    DEVICE_BUSY = "device-busy"
    CONSTRAINTS_UNSATISFIABLE = "constraints-unsatisfiable"
    UNKNOWN = "unknown"


_USER_MESSAGES = {
    AcquisitionReason.PERMISSION_DENIED: "Microphone access denied. Please allow microphone permissions.",
    AcquisitionReason.DEVICE_NOT_FOUND: "No microphone found. Please connect a microphone.",
    AcquisitionReason.DEVICE_BUSY: "Microphone is already in use by another application.",
    AcquisitionReason.CONSTRAINTS_UNSATISFIABLE: "Cannot satisfy audio constraints. Try different settings.",
}


class AcquisitionError(Exception):
    """Raised by a capture source when the microphone cannot be opened."""

    def __init__(self, reason: AcquisitionReason, message: str = ""):
        super().__init__(message or reason.value)
        self.reason = reason
        self.message = message

    @property
    def user_message(self) -> str:
        if self.reason is AcquisitionReason.UNKNOWN:
            return self.message or "Failed to access microphone"
        return _USER_MESSAGES[self.reason]


class ConfigurationError(Exception):
    pass


class BufferLengthMismatch(ConfigurationError):
    def __init__(self, expected: int, actual: int):
        super().__init__(f"previous frame has {actual} bins, current frame has {expected}")
        self.expected = expected
        self.actual = actual
