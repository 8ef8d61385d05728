"""Exception types shared across the bot.

FatalError marks conditions the bot cannot schedule correctly without
(authentication, channel listing at startup, file metadata). Everything else
is handled locally by the component that hit it.
"""


class BlackholeError(Exception):
    """Base class for errors raised by the bot itself."""


class FatalError(BlackholeError):
    """Raised when the process must stop."""


class ConfigError(FatalError):
    """Raised when the configuration cannot be turned into settings."""


class MalformedItemError(BlackholeError):
    """Raised for a single message or file whose data cannot be used.

    Only that item is dropped; the producer logs and moves on.
    """
