# -*- coding: utf-8 -*-
from typing import Optional


class ImageGeneratorError(Exception):
    """Base class for every error raised while serving a generated image."""
    pass


class InvalidRequestError(ImageGeneratorError, ValueError):
    """Bad or zero dimensions, malformed encoding, unsafe path segments."""
    pass


class HashMismatchError(ImageGeneratorError):
    """The verification hash in the URL does not match its encoded params."""

    def __init__(self, message: str, redirect_url: Optional[str] = None):
        super().__init__(message)
        self.redirect_url = redirect_url


class SourceNotFoundError(ImageGeneratorError):
    pass


class TransformError(ImageGeneratorError):
    """Unsupported format, failed external tool or invalid output image."""
    pass


class FilesystemError(ImageGeneratorError):
    pass


class RemoteFetchError(ImageGeneratorError):

    def __init__(self, message: str, status: int = 404):
        super().__init__(message)
        self.status = status
