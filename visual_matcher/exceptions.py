"""
Error taxonomy for the visual matcher.

Every error carries a ``user_message`` suitable for showing to the person
who submitted the query image. The caller distinguishes "your image or URL
is bad" (ImageError, FetchError subclasses) from "the server has a problem"
(ModelError, StoreError) by type.
"""


class VisualMatcherError(Exception):
    """Base class for all visual matcher errors."""

    user_message = "Failed to process image."

    def __init__(self, message: str = None):
        super().__init__(message or self.user_message)


class ImageError(VisualMatcherError):
    """The image content itself cannot be used."""


class DecodeError(ImageError):
    user_message = "Invalid or corrupted image file."


class UnsupportedFormatError(ImageError):
    user_message = "Unsupported image format. Please use JPEG, PNG, WebP, GIF, or TIFF."


class ModelError(VisualMatcherError):
    """Backbone not initialized, failed to load, or failed during inference."""

    user_message = "Failed to extract image features."


class FetchError(VisualMatcherError):
    """Catch-all for remote image download failures."""

    user_message = "Failed to process image from URL."


class HostUnresolvableError(FetchError):
    user_message = "Unable to resolve the image URL. Please check the URL."


class ConnectionRefusedFetchError(FetchError):
    user_message = "Connection refused. The server may be down."


class ImageNotFoundError(FetchError):
    user_message = "Image not found at the provided URL (404)."


class AccessDeniedError(FetchError):
    user_message = "Access denied to the image URL (403)."


class FetchTimeoutError(FetchError):
    user_message = "Request timeout. Please try with a different image URL."


class DimensionMismatchError(VisualMatcherError, ValueError):
    user_message = "Vectors must have the same length."


class StoreError(VisualMatcherError):
    user_message = "Database operation failed."


class CatalogError(VisualMatcherError):
    user_message = "Failed to fetch products from database."
