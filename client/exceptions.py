"""
Errors raised by the PestCheck client.

Every failed API call surfaces as a ``ClientError`` subclass carrying the
HTTP status (``None`` when no response came back), a user-facing message in
``detail`` and a ``retry`` hint. Screens catch these at the call site and
show ``str(error)``.
"""
from rest_framework import exceptions, status

# Statuses where trying again (usually with another image) can succeed
RETRYABLE_STATUSES = (
    status.HTTP_400_BAD_REQUEST,
    status.HTTP_503_SERVICE_UNAVAILABLE,
    status.HTTP_504_GATEWAY_TIMEOUT,
)

WARMING_UP_MESSAGE = 'ML service is warming up. Please wait 30 seconds and try again.'
TAKING_LONGER_MESSAGE = 'ML service is taking longer than expected. Please try again.'


class ClientError(exceptions.APIException):
    default_detail = 'Request failed. Please try again.'
    default_code = 'client_error'
    default_retry = False

    def __init__(self, detail=None, code=None, status_code=None, retry=None, payload=None):
        super().__init__(detail, code)
        if status_code is not None:
            self.status_code = status_code
        self.retry = self.default_retry if retry is None else bool(retry)
        self.payload = payload

    @property
    def message(self):
        return str(self.detail)


class NetworkError(ClientError):
    """No response was received at all."""
    status_code = None
    default_detail = (
        'Cannot reach the server. Check your internet connection '
        'or wait a moment while the server wakes up.'
    )
    default_code = 'network_error'
    default_retry = True


class RequestValidationError(ClientError):
    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Invalid request. Please check your input.'
    default_code = 'invalid'
    default_retry = True


class AuthenticationError(ClientError):
    status_code = status.HTTP_401_UNAUTHORIZED
    default_detail = 'Invalid credentials'
    default_code = 'not_authenticated'


class PermissionDeniedError(ClientError):
    status_code = status.HTTP_403_FORBIDDEN
    default_detail = 'You do not have permission to perform this action.'
    default_code = 'permission_denied'


class NotFoundError(ClientError):
    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'Not found.'
    default_code = 'not_found'


class ServiceUnavailable(ClientError):
    """The ML backend is cold-starting (503) or timed out (504)."""
    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = WARMING_UP_MESSAGE
    default_code = 'service_unavailable'
    default_retry = True


class ServerError(ClientError):
    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR
    default_detail = 'Server error. Please try again later.'
    default_code = 'server_error'


class UnexpectedResponse(ClientError):
    """The server answered with a body the client cannot decode."""
    default_detail = 'Unexpected response from server. Please try again.'
    default_code = 'unexpected_response'
    default_retry = True


class WorkflowStateError(RuntimeError):
    """Raised when a workflow operation is called from the wrong state."""
    pass


class InvalidImage(ValueError):
    """Raised when a selected file cannot be used as a pest photo."""
    pass


def _messages(value):
    if isinstance(value, str):
        return [value] if value.strip() else []
    if isinstance(value, (list, tuple)):
        found = []
        for item in value:
            found.extend(_messages(item))
        return found
    if isinstance(value, dict):
        found = []
        for item in value.values():
            found.extend(_messages(item))
        return found
    return []


def flatten_errors(data):
    """
    Collapse a server error body into one display string.

    Looks at ``error``, ``detail`` and ``non_field_errors`` first, then joins
    every field message with a space (DRF serializer errors). Returns an
    empty string when nothing readable is present.
    """
    if isinstance(data, dict):
        for key in ('error', 'detail'):
            found = _messages(data.get(key))
            if found:
                return ' '.join(found)
        non_field = _messages(data.get('non_field_errors'))
        if non_field:
            return non_field[0]
        return ' '.join(_messages({k: v for k, v in data.items() if k != 'retry'}))
    return ' '.join(_messages(data))


def error_from_response(status_code, data=None):
    """Build the ``ClientError`` matching a non-2xx response."""
    if status_code == status.HTTP_400_BAD_REQUEST:
        error_class = RequestValidationError
    elif status_code == status.HTTP_401_UNAUTHORIZED:
        error_class = AuthenticationError
    elif status_code == status.HTTP_403_FORBIDDEN:
        error_class = PermissionDeniedError
    elif status_code == status.HTTP_404_NOT_FOUND:
        error_class = NotFoundError
    elif status_code in (status.HTTP_503_SERVICE_UNAVAILABLE, status.HTTP_504_GATEWAY_TIMEOUT):
        error_class = ServiceUnavailable
    elif status_code >= 500:
        error_class = ServerError
    else:
        error_class = ClientError

    # Raw text bodies of 5xx responses are usually HTML error pages
    if status_code >= 500 and not isinstance(data, dict):
        detail = ''
    else:
        detail = flatten_errors(data)
    if not detail and status_code == status.HTTP_504_GATEWAY_TIMEOUT:
        detail = TAKING_LONGER_MESSAGE

    retry = None
    if isinstance(data, dict) and data.get('retry') is not None:
        retry = data['retry']
    elif status_code in RETRYABLE_STATUSES:
        retry = True

    return error_class(detail or None, status_code=status_code, retry=retry, payload=data)
