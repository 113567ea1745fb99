"""Domain errors raised by services and translated by the HTTP layer."""


class StudyForestError(Exception):
    """Base class for errors raised by the service layer."""


class NotFoundError(StudyForestError, LookupError):
    """A study, habit, point, fulfillment or emoji does not exist, or
    belongs to a different study than the one requested."""


class InvalidInputError(StudyForestError, ValueError):
    """A request payload has the wrong shape."""
