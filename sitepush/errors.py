"""Exception types raised outside the transport boundary.

Transports never raise these past their public methods; they convert every
failure into an Error message instead. What remains here are startup-time
configuration problems and the few internal signals used by transports.
"""


class SitePushError(Exception):
    """Base class for all sitepush errors."""


class ConfigurationError(SitePushError):
    """Fatal configuration problem detected before the main loop starts."""


class TransportError(SitePushError):
    """A transfer failed inside a transport for a known reason."""

    def __init__(self, target_name: str, message: str) -> None:
        super().__init__(f"{target_name}: {message}")
        self.target_name = target_name
