"""
DRF EXCEPTION_HANDLER producing the uniform error body:
{timestamp, status, error, messages[], path}.
"""
import logging
from http import HTTPStatus

from django.utils import timezone
from rest_framework import exceptions, status
from rest_framework.response import Response
from rest_framework.views import exception_handler as drf_exception_handler

from storefront.core.exceptions import (
    NotFoundError,
    ValidationFailedError,
    DomainConflictError,
    ExternalServiceError,
    WebhookSignatureError,
)

logger = logging.getLogger(__name__)


def _flatten(detail, prefix=None):
    """Turns DRF's nested error detail into 'field: message' strings."""
    if isinstance(detail, dict):
        messages = []
        for field, value in detail.items():
            name = field if prefix is None else f"{prefix}.{field}"
            messages.extend(_flatten(value, None if field == 'non_field_errors' else name))
        return messages
    if isinstance(detail, list):
        messages = []
        for value in detail:
            messages.extend(_flatten(value, prefix))
        return messages
    return [f"{prefix}: {detail}" if prefix else str(detail)]


def error_body(status_code, messages, request, error=None):
    return {
        'timestamp': timezone.now().isoformat(),
        'status': status_code,
        'error': error or HTTPStatus(status_code).phrase,
        'messages': messages,
        'path': request.path if request is not None else '',
    }


def _core_status(exc):
    if isinstance(exc, NotFoundError):
        return status.HTTP_404_NOT_FOUND, None
    if isinstance(exc, ValidationFailedError):
        return status.HTTP_400_BAD_REQUEST, 'Validation Failed'
    if isinstance(exc, DomainConflictError):
        return status.HTTP_409_CONFLICT, None
    if isinstance(exc, WebhookSignatureError):
        return status.HTTP_400_BAD_REQUEST, None
    if isinstance(exc, ExternalServiceError):
        return status.HTTP_502_BAD_GATEWAY, None
    return None, None


def custom_exception_handler(exc, context):
    request = context.get('request')

    status_code, error = _core_status(exc)
    if status_code is not None:
        messages = exc.messages if isinstance(exc, ValidationFailedError) else [exc.message]
        if status_code == status.HTTP_502_BAD_GATEWAY:
            logger.error("External service failure on %s: %s", getattr(request, 'path', ''), exc.message)
        return Response(error_body(status_code, messages, request, error), status=status_code)

    # Framework exceptions (validation, auth, permission, Http404, ...)
    response = drf_exception_handler(exc, context)
    if response is not None:
        if isinstance(exc, exceptions.ValidationError):
            messages, error = _flatten(exc.detail), 'Validation Failed'
        else:
            detail = response.data.get('detail', response.data) if isinstance(response.data, dict) else response.data
            messages, error = _flatten(detail), None
        response.data = error_body(response.status_code, messages, request, error)
        return response

    logger.exception("Unhandled error on %s", getattr(request, 'path', ''))
    return Response(
        error_body(
            status.HTTP_500_INTERNAL_SERVER_ERROR,
            ['An unexpected error occurred. Please try again later.'],
            request,
        ),
        status=status.HTTP_500_INTERNAL_SERVER_ERROR,
    )
