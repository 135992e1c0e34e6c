class NearRepeatError(ValueError):
    """Base class for errors raised by the near-repeat analysis"""


class InputError(NearRepeatError):
    """Event data is empty, malformed or contains duplicate ids"""


class ConfigurationError(NearRepeatError):
    """Analysis parameters are invalid"""


class ClassificationError(NearRepeatError):
    """Cluster sizes cannot be split into the requested number of classes"""
