from typing import Dict, Optional


class TournadoError(Exception):
    status_code = 400

    def __init__(self, message: str = None):
        self.message = message or self.__class__.__name__
        super().__init__(self.message)

    def to_dict(self) -> dict:
        return {'error': self.message}


class ValidationError(TournadoError):
    def __init__(self, message: str = 'Validation failed', errors: Optional[Dict[str, str]] = None):
        self.errors = errors or {}
        super().__init__(message)

    def to_dict(self) -> dict:
        data = super().to_dict()
        if self.errors:
            data['errors'] = self.errors
        return data


class NotFoundError(TournadoError):
    status_code = 404


class ForbiddenError(TournadoError):
    status_code = 403

    def __init__(self, message: str = 'Forbidden: Insufficient permissions'):
        super().__init__(message)


class ConflictError(TournadoError):
    """The stored record changed after the client read it."""
    status_code = 409

    def __init__(self, message: str = 'Group stage was modified by another user',
                 server_updated_at: str = None):
        self.server_updated_at = server_updated_at
        super().__init__(message)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data['conflict'] = True
        if self.server_updated_at:
            data['updated_at'] = self.server_updated_at
        return data


class RateLimitError(TournadoError):
    status_code = 429

    def __init__(self, retry_after: int, message: str = 'Too many requests'):
        self.retry_after = retry_after
        super().__init__(message)

    def to_dict(self) -> dict:
        data = super().to_dict()
        data['retry_after'] = self.retry_after
        return data


class EmailError(TournadoError):
    status_code = 502
