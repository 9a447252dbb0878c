class PowerWattException(Exception):
    """Base class for errors surfaced by the query API."""
    code = "POWERWATT_ERROR"


class PipelineUnavailableException(PowerWattException):
    """The usage pipeline has not been constructed (tracking disabled or failed to start)."""
    code = "PIPELINE_UNAVAILABLE"


class InvalidRangeException(PowerWattException):
    """A query range is empty or inverted."""
    code = "INVALID_RANGE"
