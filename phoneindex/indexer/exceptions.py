class IndexerError(Exception):
    """Base exception for all ingestion errors."""


class IndexerBusyError(IndexerError):
    """Raised when an ingestion run is requested while another is active."""


class SourceUnreadableError(IndexerError):
    """Raised when a source is missing, cannot be opened, or has no known size."""


class UnsupportedEncodingError(IndexerError):
    """Raised when the encoding selector names an unknown codec."""


class PhoneColumnNotFoundError(IndexerError):
    """Raised when the header row does not contain the named phone column."""
