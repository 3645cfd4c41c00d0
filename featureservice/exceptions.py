"""
Exception hierarchy for the feature service client.
"""

from typing import Optional


class FeatureServiceError(Exception):
    """Base exception for all client errors."""
    pass


class RestError(FeatureServiceError):
    """
    Raised when a request against the REST endpoint fails.

    Transport failures, undecodable responses, error envelopes and failed
    edit results all end up here. The original exception is chained as
    ``__cause__``.
    """

    def __init__(
        self,
        message: str,
        url: str,
        request_text: Optional[str] = None,
        http_method: str = "GET",
        response_text: Optional[str] = None,
    ):
        super().__init__(message)
        self.url = url
        self.request_text = request_text
        self.http_method = http_method
        self.response_text = response_text


class SchemaError(FeatureServiceError):
    """Raised when the service schema does not satisfy a lookup or invariant."""
    pass


class CodedValueError(FeatureServiceError):
    """Raised when a coded value domain lookup is missing or ambiguous."""
    pass


class PreconditionError(FeatureServiceError):
    """Raised when the caller passes features that cannot be edited together."""
    pass


class MissingFieldError(FeatureServiceError, KeyError):
    """Raised when a field does not exist on a feature or wire record."""

    def __str__(self):
        return str(self.args[0]) if self.args else ""


class FieldTypeError(FeatureServiceError, TypeError):
    """Raised when a wire value cannot be converted to the declared type."""
    pass
