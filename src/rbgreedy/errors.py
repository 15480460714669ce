"""
Exception types raised by the reduced-basis training engine.

All of these are fatal for a distributed run: every rank has to stay in
lock-step through later collectives, so callers should abort the whole
process group rather than try to recover locally.

Author: Anthony Poole
"""


class RBGreedyError(Exception):
    """Base class for training engine errors."""


class ConfigurationError(RBGreedyError):
    """Inconsistent parameter definitions or use of an uninitialized store."""


class FormatError(RBGreedyError):
    """Sample counts or array shapes that cannot form a training set."""


class RangeError(RBGreedyError, IndexError):
    """Sample index outside the calling rank's local partition."""
