class WavefleetError(Exception):
    """Base error for Wavefleet."""


class RecoverableError(WavefleetError):
    """Indicates the operation can be retried safely."""


class PermanentError(WavefleetError):
    """Indicates the operation should not be retried."""


class AuthError(WavefleetError):
    """Authentication or authorization failure."""


class ValidationError(WavefleetError):
    """Input validation failure."""


class InvalidTransitionError(ValidationError):
    """Requested status change is not allowed from the current status."""


class NotFoundError(WavefleetError):
    """Referenced rollout, run or device does not exist."""


class BackingUnavailable(RecoverableError):
    """Control-plane store cannot be reached."""


class DeviceApplyError(WavefleetError):
    """Version/channel could not be applied to a device."""
