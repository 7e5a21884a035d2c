"""Exceptions raised by the hub to its callers."""


class HubError(Exception):
    """Base class for errors reported back to whoever issued a command."""


class ConfigError(HubError, ValueError):
    """A port specification or argument could not be parsed."""


class PortUnavailable(HubError, OSError):
    """A serial device could not be opened or a TCP port could not be bound."""
