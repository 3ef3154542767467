"""Error taxonomy for the hazard statistics operator."""


class HazardStatisticsError(Exception):
    """Base class for all hazard statistics failures."""


class InvalidInputError(HazardStatisticsError, ValueError):
    """A required input is absent or violates its constraint."""


class TransformUnavailableError(HazardStatisticsError):
    """No coordinate operation exists between two CRSs."""


class TransformFailedError(HazardStatisticsError):
    """A coordinate operation could not be applied to an envelope or geometry."""


class NonInvertibleError(HazardStatisticsError):
    """A transform has no inverse."""


class ReadFailedError(HazardStatisticsError, OSError):
    """A raster read or vector query failed, or a read returned no coverage."""


class SchemaError(HazardStatisticsError):
    """A vector source lacks a geometry attribute."""


class CancelledError(HazardStatisticsError):
    """The progress listener asked the operator to stop."""


class ProcessError(HazardStatisticsError):
    """Operator-level failure wrapping the original cause.

    :param message: Human readable summary
    :param cause: The exception that aborted the invocation
    """

    def __init__(self, message: str, cause: BaseException | None = None) -> None:
        super().__init__(message)
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause
