import json
import logging

from django.conf import settings

from .exceptions import ClientError, RequestValidationError
from .http import fetch_concurrently
from .serializers import (
    AuthResponseSerializer,
    DetectionSerializer,
    DetectionStatisticsSerializer,
    FarmRequestSerializer,
    FarmSerializer,
    HeatmapPointSerializer,
    InferenceResultSerializer,
    UserSerializer,
    VerificationRequestSerializer,
    decode_list,
    decode_object,
)

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8
SEVERITY_ORDER = ['low', 'medium', 'high', 'critical']


class Location:
    """Where a photo was taken or a farm sits."""

    def __init__(self, latitude, longitude, address=''):
        self.latitude = float(latitude)
        self.longitude = float(longitude)
        self.address = address or ''

    @classmethod
    def default(cls):
        return cls(**settings.DEFAULT_LOCATION)

    @classmethod
    def resolve(cls, fix=None):
        """Use the GPS fix when there is one, otherwise the default location."""
        if fix is None:
            return cls.default()
        if isinstance(fix, cls):
            return fix
        return cls(fix['latitude'], fix['longitude'], fix.get('address', ''))

    def as_form(self):
        return {
            'latitude': str(self.latitude),
            'longitude': str(self.longitude),
            'address': self.address,
        }

    def __eq__(self, other):
        return isinstance(other, Location) and (
            (self.latitude, self.longitude, self.address)
            == (other.latitude, other.longitude, other.address)
        )

    def __repr__(self):
        return f"<Location {self.latitude}, {self.longitude}>"


# ==================== AUTH ====================
class AuthService:
    def __init__(self, client):
        self.client = client
        self.session = client.session

    def login(self, username, password):
        response = self.client.post(
            '/auth/login/',
            json={'username': username, 'password': password},
            authenticate=False,
        )
        payload = decode_object(response.data, AuthResponseSerializer)
        self.session.login(payload['user'], payload['tokens'])
        logger.info("User %s logged in", username)
        return self.session.user

    def register(self, data):
        """
        Create a farmer account and log it in.

        ``data`` carries username, email, password, password_confirm and the
        optional profile fields. Mismatched passwords never reach the server.
        """
        if data.get('password') != data.get('password_confirm'):
            raise RequestValidationError('Passwords do not match', retry=False)

        response = self.client.post('/auth/register/', json=data, authenticate=False)
        payload = decode_object(response.data, AuthResponseSerializer)
        self.session.login(payload['user'], payload['tokens'])
        logger.info("Registered user %s", data.get('username'))
        return self.session.user

    def logout(self):
        refresh = self.session.refresh_token
        try:
            if refresh:
                self.client.post('/auth/logout/', json={'refresh_token': refresh})
        except ClientError as e:
            logger.warning("Logout request failed: %s", e)
        finally:
            self.session.logout()

    def profile(self):
        response = self.client.get('/auth/profile/')
        user = decode_object(response.data, UserSerializer)
        self.session.update_user(user)
        return self.session.user

    def update_profile(self, fields):
        response = self.client.patch('/auth/profile/update/', json=fields)
        data = response.data
        # The update endpoint wraps the user as {message, user}
        if isinstance(data, dict) and isinstance(data.get('user'), dict):
            data = data['user']
        user = decode_object(data, UserSerializer)
        self.session.update_user(user)
        return self.session.user

    def change_password(self, current_password, new_password, confirm_password):
        if new_password != confirm_password:
            raise RequestValidationError('New passwords do not match', retry=False)
        if len(new_password) < MIN_PASSWORD_LENGTH:
            raise RequestValidationError(
                f'Password must be at least {MIN_PASSWORD_LENGTH} characters long', retry=False,
            )
        self.client.post('/auth/change-password/', json={
            'current_password': current_password,
            'new_password': new_password,
        })
        logger.info("Password changed")

    def update_notification_settings(self, preferences):
        response = self.client.patch('/auth/notification-settings/', json=preferences)
        return response.data

    def submit_verification_request(self, rsbsa_number, valid_id_image, notes=''):
        if not rsbsa_number:
            raise RequestValidationError('Please enter your RSBSA number.', retry=False)
        if valid_id_image is None:
            raise RequestValidationError('Please upload a valid ID image.', retry=False)

        response = self.client.post(
            '/verification-requests/',
            data={'rsbsa_number': rsbsa_number, 'notes': notes or ''},
            files={'valid_id_image': valid_id_image.as_upload()},
        )
        return decode_object(response.data, VerificationRequestSerializer)

    def my_verification_request(self):
        try:
            response = self.client.get('/verification-requests/my_request/')
        except ClientError as e:
            logger.info("No verification request on file: %s", e)
            return None
        if not response.data:
            return None
        return decode_object(response.data, VerificationRequestSerializer)


# ==================== DETECTIONS ====================
def inference_form(inference):
    """Flatten an inference payload into multipart form fields."""
    form = {}
    for key, value in inference.items():
        if value is None:
            continue
        if isinstance(value, (list, dict)):
            form[key] = json.dumps(value)
        else:
            form[key] = str(value)
    return form


class DetectionService:
    def __init__(self, client):
        self.client = client

    def preview(self, image, crop_type, location):
        """Run inference on ``image`` without saving anything."""
        data = {'crop_type': crop_type}
        data.update(location.as_form())
        response = self.client.post(
            '/detections/preview/',
            data=data,
            files={'image': image.as_upload()},
        )
        return decode_object(response.data, InferenceResultSerializer)

    def create(self, image, crop_type, location, inference):
        """Persist a confirmed detection; returns ``(status_code, record)``."""
        data = inference_form(inference)
        data['crop_type'] = crop_type
        data.update(location.as_form())
        response = self.client.post(
            '/detections/',
            data=data,
            files={'image': image.as_upload()},
        )
        return response.status_code, decode_object(response.data, DetectionSerializer)

    def report(self, fields):
        """Create a manual detection record (no photo)."""
        response = self.client.post('/detections/', json=fields)
        return decode_object(response.data, DetectionSerializer)

    def statistics(self):
        response = self.client.get('/detections/statistics/')
        return decode_object(response.data, DetectionStatisticsSerializer)

    def heatmap(self, days=30):
        response = self.client.get('/detections/heatmap_data/', params={'days': days})
        return decode_list(response.data, HeatmapPointSerializer)

    def my_detections(self, page_size=None):
        params = {'my_detections': 'true'}
        if page_size:
            params['page_size'] = page_size
        response = self.client.get('/detections/', params=params)
        return decode_list(response.data, DetectionSerializer)

    def resolve(self, detection_id):
        """
        Mark an infestation as resolved.

        Tries PATCH first and falls back to PUT for servers that only accept
        full updates.
        """
        payload = {'active': False, 'status': 'resolved'}
        path = f'/detections/{detection_id}/'
        try:
            response = self.client.patch(path, json=payload)
        except ClientError as e:
            logger.warning("PATCH %s failed (%s), retrying with PUT", path, e)
            response = self.client.put(path, json=payload)
        return response.data


class Dashboard:
    """Farmer dashboard: statistics cards, charts and the latest detections."""

    RECENT_COUNT = 5

    def __init__(self, client):
        self.detections = DetectionService(client)
        self.statistics = None
        self.recent = []
        self.error = None

    def load(self):
        try:
            results = fetch_concurrently({
                'statistics': self.detections.statistics,
                'recent': lambda: self.detections.my_detections(page_size=self.RECENT_COUNT),
            })
        except ClientError as e:
            logger.error("Failed to load dashboard: %s", e)
            self.error = str(e)
            raise
        self.error = None
        self.statistics = results['statistics']
        self.recent = results['recent'][:self.RECENT_COUNT]
        return self

    def severity_breakdown(self):
        """Chart rows ``(severity, count, percent)`` in severity order."""
        if not self.statistics:
            return []
        counts = self.statistics['by_severity']
        total = sum(counts.values())
        rows = []
        for severity in SEVERITY_ORDER:
            count = counts.get(severity, 0)
            percent = round(count * 100 / total, 1) if total else 0.0
            rows.append((severity, count, percent))
        return rows

    def crop_breakdown(self):
        if not self.statistics:
            return []
        return sorted((self.statistics.get('by_crop') or {}).items(), key=lambda item: -item[1])


# ==================== FARMS ====================
class FarmService:
    DEFAULT_SIZE = 5
    DEFAULT_CROP = 'Rice'

    def __init__(self, client):
        self.client = client

    def list_farms(self):
        response = self.client.get('/farms/')
        return decode_list(response.data, FarmSerializer)

    def submit_farm_request(self, name, location, size=None, crop_type=None):
        """
        Ask an admin to register a farm. Farms only appear in ``list_farms``
        after the request is approved.
        """
        if not name or location is None:
            raise RequestValidationError('Please fill in all required fields', retry=False)
        payload = {
            'name': name,
            'size': float(size) if size else self.DEFAULT_SIZE,
            'crop_type': crop_type or self.DEFAULT_CROP,
            'lat': location.latitude,
            'lng': location.longitude,
        }
        response = self.client.post('/farm-requests/', json=payload)
        logger.info("Farm request submitted for %s", name)
        return decode_object(response.data, FarmRequestSerializer)
