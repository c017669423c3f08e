class InvalidPhoneError(ValueError):
    """Raised when a value cannot be reduced to a canonical 11-digit phone."""
