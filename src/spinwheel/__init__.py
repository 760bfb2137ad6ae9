"""Channel-point wheel spin service for Twitch streams."""

__version__ = "1.0.0"

from .events import GrantResult, Outcome, RedemptionEvent  # noqa: E402
from .exceptions import ConfigurationError, IdentityNotFound, SpinwheelError, UpstreamError  # noqa: E402
from .outcome import roll_outcome  # noqa: E402

__all__ = [
    "__version__",
    "ConfigurationError",
    "GrantResult",
    "IdentityNotFound",
    "Outcome",
    "RedemptionEvent",
    "SpinwheelError",
    "UpstreamError",
    "roll_outcome",
]
