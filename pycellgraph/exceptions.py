##########################################################################
#
# Errors raised by the clustering pipeline
#
##########################################################################


class InvalidArgumentError(ValueError):
    """An argument is out of range or of the wrong kind."""


class NonPositiveKError(InvalidArgumentError):
    """Raised when the neighbor count ``k`` is smaller than 1."""


class KTooLargeError(InvalidArgumentError):
    """Raised when ``k`` exceeds ``n_points - 2``."""


class EmptyInputError(ValueError):
    """Raised when there are no points (or graph vertices) to cluster."""


class UnsupportedConfigurationError(ValueError):
    """Raised for option combinations that are documented as unsupported."""
