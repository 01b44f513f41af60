"""
Error taxonomy for the ingestion and detection pipeline
"""


class GeoFineError(Exception):
    """Base class for all pipeline errors"""


class AuthError(GeoFineError):
    """Missing, unknown or inactive tenant API key"""


class ValidationError(GeoFineError):
    """Inbound webhook body is missing required fields"""


class GeometryParseError(GeoFineError):
    """Vendor WKT geometry could not be parsed"""


class InvalidDeviceIdError(GeoFineError):
    """Vendor device id has no usable integer in it"""


class ResolutionRaceError(GeoFineError):
    """A concurrent create won the race and the record could not be re-read"""


class RuleEvaluationPersistenceError(GeoFineError):
    """Infraction/Fine could not be written"""


class StorageTimeoutError(GeoFineError):
    """A storage call hit its timeout; safe to retry"""


class QueueFullError(GeoFineError):
    """The event queue stayed full for the whole submit timeout"""
