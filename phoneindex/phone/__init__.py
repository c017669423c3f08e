from phoneindex.phone.exceptions import InvalidPhoneError
from phoneindex.phone.normalizer import (
    format_phone,
    normalize_phone,
    phone_prefix,
    try_normalize_phone,
)

__all__ = [
    "InvalidPhoneError",
    "format_phone",
    "normalize_phone",
    "phone_prefix",
    "try_normalize_phone",
]
