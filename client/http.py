import logging
import threading
from concurrent.futures import ThreadPoolExecutor

import requests
from django.conf import settings
from rest_framework import status

from .exceptions import (
    AuthenticationError,
    ClientError,
    NetworkError,
    ServiceUnavailable,
    TAKING_LONGER_MESSAGE,
    error_from_response,
)
from .serializers import AccessTokenSerializer, decode_object
from .session import Session

logger = logging.getLogger(__name__)

REFRESH_PATH = '/auth/token/refresh/'
SESSION_EXPIRED_MESSAGE = 'Session expired. Please log in again.'


class TransportResponse:
    def __init__(self, status_code, data=None, headers=None):
        self.status_code = status_code
        self.data = data
        self.headers = headers or {}

    @property
    def ok(self):
        return 200 <= self.status_code < 300

    def __repr__(self):
        return f"<TransportResponse {self.status_code}>"


# ==================== TRANSPORTS ====================
class RequestsTransport:
    """
    Talks to the real PestCheck REST API.

    A transport only moves bytes: it returns a ``TransportResponse`` for every
    HTTP status and raises only when no response arrived at all.
    """

    def __init__(self, base_url=None, timeout=None, session=None):
        self.base_url = (base_url or settings.API_URL).rstrip('/')
        self.timeout = timeout or settings.API_TIMEOUT
        self.http = session or requests.Session()

    def url_for(self, path):
        if path.startswith(('http://', 'https://')):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def request(self, method, path, params=None, json=None, data=None, files=None, headers=None):
        url = self.url_for(path)
        logger.debug("Making request to: %s %s", method, url)
        try:
            response = self.http.request(
                method,
                url,
                params=params,
                json=json,
                data=data,
                files=files,
                headers=headers,
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout:
            logger.warning("Timeout calling %s %s", method, url)
            raise ServiceUnavailable(TAKING_LONGER_MESSAGE, status_code=status.HTTP_504_GATEWAY_TIMEOUT)
        except requests.exceptions.ConnectionError as e:
            logger.warning("Cannot connect to %s: %s", url, e)
            raise NetworkError()
        except requests.exceptions.RequestException as e:
            logger.error("Request to %s failed: %s", url, e)
            raise NetworkError(f'Request failed: {e}')

        if not response.content:
            payload = None
        else:
            try:
                payload = response.json()
            except ValueError:
                payload = response.text
        logger.debug("Response received from %s: %s", url, response.status_code)
        return TransportResponse(response.status_code, payload, dict(response.headers))


# ==================== API CLIENT ====================
class ApiClient:
    """
    Authenticated access to the API over any transport.

    Adds the bearer token from the session, refreshes it once when a request
    comes back 401 and replays that request, and turns every non-2xx
    response into a ``ClientError``.
    """

    def __init__(self, transport, session):
        self.transport = transport
        self.session = session
        self._refresh_lock = threading.Lock()

    def get(self, path, params=None, **kwargs):
        return self.request('GET', path, params=params, **kwargs)

    def post(self, path, json=None, data=None, files=None, **kwargs):
        return self.request('POST', path, json=json, data=data, files=files, **kwargs)

    def put(self, path, json=None, **kwargs):
        return self.request('PUT', path, json=json, **kwargs)

    def patch(self, path, json=None, **kwargs):
        return self.request('PATCH', path, json=json, **kwargs)

    def delete(self, path, params=None, **kwargs):
        return self.request('DELETE', path, params=params, **kwargs)

    def request(self, method, path, params=None, json=None, data=None, files=None, authenticate=True):
        token, response = self._send(method, path, params, json, data, files, authenticate)

        if response.status_code == status.HTTP_401_UNAUTHORIZED and authenticate:
            self.refresh_access_token(stale_token=token)
            token, response = self._send(method, path, params, json, data, files, authenticate)

        if not response.ok:
            error = error_from_response(response.status_code, response.data)
            logger.info("%s %s failed with %s: %s", method, path, response.status_code, error)
            raise error
        return response

    def _send(self, method, path, params, json, data, files, authenticate):
        headers = {}
        token = self.session.access_token if authenticate else None
        if token:
            headers['Authorization'] = f'Bearer {token}'
        response = self.transport.request(
            method, path, params=params, json=json, data=data, files=files, headers=headers,
        )
        return token, response

    def refresh_access_token(self, stale_token=None):
        """Trade the refresh token for a new access token, or expire the session."""
        with self._refresh_lock:
            # Another thread already refreshed while this one waited
            if stale_token and self.session.access_token and self.session.access_token != stale_token:
                return self.session.access_token

            refresh = self.session.refresh_token
            if not refresh:
                logger.error("Token refresh failed: no refresh token")
                self.session.expire()
                raise AuthenticationError(SESSION_EXPIRED_MESSAGE)

            try:
                response = self.transport.request('POST', REFRESH_PATH, json={'refresh': refresh})
                if not response.ok:
                    raise error_from_response(response.status_code, response.data)
                access = decode_object(response.data, AccessTokenSerializer)['access']
            except ClientError as e:
                logger.error("Token refresh failed: %s", e)
                self.session.expire()
                raise AuthenticationError(SESSION_EXPIRED_MESSAGE) from e

            self.session.update_access_token(access)
            logger.info("Access token refreshed")
            return access


def fetch_concurrently(calls):
    """
    Run independent calls in parallel and wait for all of them.

    ``calls`` maps a name to a zero-argument callable. Returns the results
    under the same names; if any call raised, the first error (in ``calls``
    order) is re-raised once every call has finished.
    """
    if not calls:
        return {}
    with ThreadPoolExecutor(max_workers=len(calls)) as executor:
        futures = {name: executor.submit(call) for name, call in calls.items()}
    results = {}
    for name, future in futures.items():
        results[name] = future.result()
    return results


# ==================== FACTORY ====================
def get_transport():
    if settings.USE_MOCK_API:
        from .mock import MockBackend
        logger.info("Using the in-memory mock API")
        return MockBackend()
    return RequestsTransport()


def create_client(session=None, transport=None):
    if session is None:
        session = Session.load()
    return ApiClient(transport if transport is not None else get_transport(), session)
