"""Error taxonomy for scanning and product lookups."""

from typing import Optional

__all__ = [
    "PawsitiveError",
    "InvalidPayload",
    "LookupFailed",
    "ExternalSearchFailed",
    "CAMERA_DENIED_MESSAGE",
]

CAMERA_DENIED_MESSAGE = "Camera permission denied. Allow camera access or enter the barcode by hand."


class PawsitiveError(Exception):
    """Base error. ``user_message`` is safe to show to end users."""

    status_code = 500
    user_message = "Something went wrong, try again."

    def __init__(self, message: str = "", user_message: Optional[str] = None):
        super().__init__(message or self.user_message)
        if user_message is not None:
            self.user_message = user_message


class InvalidPayload(PawsitiveError):
    """Scan payload rejected before any lookup."""

    status_code = 400
    user_message = "That scan could not be read. Check the barcode or try another photo."


class LookupFailed(PawsitiveError):
    """The product store could not be reached, even after a retry."""

    status_code = 503
    user_message = "Scan failed, try again."


class ExternalSearchFailed(PawsitiveError):
    """The external product search was unreachable or errored.

    The intake workflow treats this as "not found" rather than a failure.
    """

    status_code = 502
    user_message = "Product not found."
