"""Exception types raised by the daemon."""


class GamedError(Exception):
    """Base class for daemon errors."""


class ConfigError(GamedError):
    """Config file is malformed or names an unknown option."""


class PlatformError(GamedError):
    """Writing a setting through to the hardware failed."""


class InputError(GamedError):
    """The key input reader stopped."""
