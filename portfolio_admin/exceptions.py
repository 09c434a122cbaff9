"""
Exceptions raised by the portfolio admin backend.

Every exception carries the HTTP status the API answers with, so request
handlers can raise them directly.
"""


class PortfolioError(Exception):
    """Base class for all errors surfaced to API callers."""
    status_code = 500

    def __init__(self, message: str, status_code: int = None):
        super().__init__(message)
        self.message = message
        if status_code is not None:
            self.status_code = status_code

    def __str__(self) -> str:
        return self.message


class AdmissionRejected(PortfolioError):
    """A whole upload batch was refused before any processing happened."""
    status_code = 413


class ValidationFailed(PortfolioError):
    """A request or uploaded file is not something we accept."""
    status_code = 400


class TranscodeFailed(PortfolioError):
    """An image could not be decoded or resized."""
    status_code = 422


class PersistenceFailed(PortfolioError):
    """Writing variants or album metadata failed."""
    status_code = 500


class AlbumNotFound(PortfolioError):
    status_code = 404

    def __init__(self, album_id: str):
        super().__init__(f"Album not found: {album_id}")
        self.album_id = album_id


class PhotoNotFound(PortfolioError):
    status_code = 404

    def __init__(self, photo_id: str):
        super().__init__(f"Photo not found: {photo_id}")
        self.photo_id = photo_id


class AuthenticationFailed(PortfolioError):
    status_code = 401
