"""
Error taxonomy for the certificate service and the JSON handlers that
translate it into HTTP responses.
"""
import logging

from flask import jsonify


class CertificateServiceError(Exception):
    """Base class for errors raised by storage, issuance and verification."""

    status_code = 500

    def __init__(self, message: str = ''):
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict:
        return {'error': self.message}


class NotFound(CertificateServiceError):
    status_code = 404


class ValidationError(CertificateServiceError):
    """Malformed input. `fields` maps field names to messages."""

    status_code = 400

    def __init__(self, message: str = 'Invalid input', fields=None):
        super().__init__(message)
        self.fields = dict(fields or {})

    def to_dict(self) -> dict:
        return {'error': self.message, 'fields': self.fields}


class ConstraintViolation(CertificateServiceError):
    status_code = 409

    def __init__(self, message: str = 'Constraint violated', field=None):
        super().__init__(message)
        self.field = field

    def to_dict(self) -> dict:
        return {'error': self.message, 'field': self.field}


class UpstreamUnavailable(CertificateServiceError):
    """A backing store could not be reached. Details stay in the logs."""

    status_code = 503

    def to_dict(self) -> dict:
        return {'error': 'Service temporarily unavailable'}


class PartialBatchFailure(CertificateServiceError):
    """Collects per-row problems of a batch import without aborting it."""

    status_code = 200

    def __init__(self, errors=None):
        super().__init__('Some rows could not be imported')
        self.errors = list(errors or [])

    def add(self, message: str) -> None:
        self.errors.append(message)

    def __bool__(self):
        return bool(self.errors)


def register_error_handlers(app) -> None:
    """Attach JSON handlers for the service errors to the given Flask app."""

    @app.errorhandler(CertificateServiceError)
    def _handle_service_error(err):
        if isinstance(err, UpstreamUnavailable):
            logging.error(f'[ERROR] upstream unavailable: {err.message}')
        return jsonify(err.to_dict()), err.status_code

    @app.errorhandler(404)
    def _handle_missing_route(_err):
        return jsonify({'error': 'Not found'}), 404

    @app.errorhandler(405)
    def _handle_bad_method(_err):
        return jsonify({'error': 'Method not allowed'}), 405
