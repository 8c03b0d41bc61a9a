"""
In-memory stand-in for the PestCheck REST API.

``MockBackend`` speaks the same interface as ``RequestsTransport`` so the
whole client can run offline (``USE_MOCK_API=True``) or under test. Routes
are matched on method and a full-path regex; anything not in the table
answers 404. Responses go through a JSON round trip so callers see exactly
what a real server would send.
"""
import copy
import datetime
import json
import logging
import re
import uuid
from urllib.parse import parse_qsl, urlsplit

from django.core.serializers.json import DjangoJSONEncoder
from django.utils import timezone
from rest_framework import status

from .http import TransportResponse
from .permissions import ADMIN_ROLES

logger = logging.getLogger(__name__)

MOCK_PASSWORD = 'pestcheck123'
DEFAULT_PAGE_SIZE = 20

NOT_FOUND = {'detail': 'Not found.'}
NOT_AUTHENTICATED = {'detail': 'Authentication credentials were not provided.'}
TOKEN_INVALID = {'detail': 'Given token not valid for any token type', 'code': 'token_not_valid'}
FORBIDDEN = {'detail': 'You do not have permission to perform this action.'}

MOCK_STATS = {
    'total_detections': 15,
    'by_severity': {'low': 4, 'medium': 6, 'high': 3, 'critical': 2},
    'by_crop': {'rice': 8, 'corn': 7},
    'by_pest': [
        {'pest_name': 'Brown Planthopper', 'count': 5},
        {'pest_name': 'Fall Armyworm', 'count': 4},
        {'pest_name': 'Rice Stem Borer', 'count': 3},
    ],
}

DEFAULT_PREVIEW = {
    'pest_name': 'Brown Planthopper',
    'pest_key': 'brown-planthopper',
    'confidence': 0.92,
    'severity': 'high',
    'scientific_name': 'Nilaparvata lugens',
    'symptoms': 'Yellowing and wilting of leaves, stunted growth, hopper burn appearance on leaves.',
    'control_methods': [
        'Use resistant varieties',
        'Apply buprofezin or pymetrozine',
        'Introduce natural predators',
    ],
    'prevention': [
        'Monitor fields regularly',
        'Avoid excessive nitrogen fertilizer',
    ],
}

# method, path pattern, handler, who may call it
PUBLIC, USER, ADMIN, SUPER_ADMIN = 'public', 'user', 'admin', 'super_admin'

ROUTES = [
    # Auth
    ('POST', r'/auth/login/', 'login', PUBLIC),
    ('POST', r'/auth/register/', 'register', PUBLIC),
    ('POST', r'/auth/token/refresh/', 'refresh_token', PUBLIC),
    ('POST', r'/auth/logout/', 'logout', USER),
    ('GET', r'/auth/profile/', 'profile', USER),
    ('PATCH', r'/auth/profile/update/', 'update_profile', USER),
    ('POST', r'/auth/change-password/', 'change_password', USER),
    ('PATCH', r'/auth/notification-settings/', 'notification_settings', USER),
    ('POST', r'/verification-requests/', 'create_verification_request', USER),
    ('GET', r'/verification-requests/my_request/', 'my_verification_request', USER),
    # Detections
    ('GET', r'/detections/', 'list_detections', USER),
    ('POST', r'/detections/', 'create_detection', USER),
    ('POST', r'/detections/preview/', 'preview_detection', USER),
    ('GET', r'/detections/statistics/', 'detection_statistics', USER),
    ('GET', r'/detections/heatmap_data/', 'heatmap_data', USER),
    ('PATCH', r'/detections/(?P<pk>\d+)/', 'update_detection', USER),
    ('PUT', r'/detections/(?P<pk>\d+)/', 'update_detection', USER),
    # Farms, pests, alerts, notifications
    ('GET', r'/farms/', 'list_farms', USER),
    ('GET', r'/farm-requests/', 'list_farm_requests', USER),
    ('POST', r'/farm-requests/', 'create_farm_request', USER),
    ('GET', r'/pests/', 'list_pests', USER),
    ('GET', r'/alerts/my_alerts/', 'my_alerts', USER),
    ('GET', r'/notifications/', 'list_notifications', USER),
    ('GET', r'/notifications/unread_count/', 'unread_count', USER),
    ('POST', r'/notifications/(?P<pk>\d+)/mark_read/', 'mark_read', USER),
    ('POST', r'/notifications/mark_all_read/', 'mark_all_read', USER),
    # Admin
    ('GET', r'/admin/users/', 'admin_list_users', ADMIN),
    ('GET', r'/admin/users/statistics/', 'admin_user_statistics', ADMIN),
    ('POST', r'/admin/users/(?P<pk>\d+)/verify_user/', 'admin_verify_user', ADMIN),
    ('POST', r'/admin/users/(?P<pk>\d+)/change_role/', 'admin_change_role', ADMIN),
    ('DELETE', r'/admin/users/(?P<pk>\d+)/', 'admin_delete_user', ADMIN),
    ('GET', r'/admin/verification-requests/', 'admin_list_verification_requests', ADMIN),
    ('POST', r'/admin/verification-requests/(?P<pk>\d+)/(?P<action>approve|reject)/',
     'admin_review_verification_request', ADMIN),
    ('GET', r'/admin/farms/', 'admin_list_farms', ADMIN),
    ('GET', r'/admin/farms/statistics/', 'admin_farm_statistics', ADMIN),
    ('POST', r'/admin/farms/(?P<pk>\d+)/verify_farm/', 'admin_verify_farm', ADMIN),
    ('DELETE', r'/admin/farms/(?P<pk>\d+)/', 'admin_delete_farm', ADMIN),
    ('GET', r'/admin/farm-requests/', 'admin_list_farm_requests', ADMIN),
    ('POST', r'/admin/farm-requests/(?P<pk>\d+)/(?P<action>approve|reject)/',
     'admin_review_farm_request', ADMIN),
    ('GET', r'/admin/detections/', 'admin_list_detections', ADMIN),
    ('GET', r'/admin/detections/statistics/', 'admin_detection_statistics', ADMIN),
    ('GET', r'/admin/detections/pending_verifications/', 'admin_pending_verifications', ADMIN),
    ('POST', r'/admin/detections/(?P<pk>\d+)/(?P<action>verify_detection|reject_detection)/',
     'admin_review_detection', ADMIN),
    ('DELETE', r'/admin/detections/(?P<pk>\d+)/', 'admin_delete_detection', ADMIN),
    ('GET', r'/admin/pests/', 'admin_list_pests', ADMIN),
    ('POST', r'/admin/pests/', 'admin_create_pest', ADMIN),
    ('PUT', r'/admin/pests/(?P<pk>\d+)/', 'admin_update_pest', ADMIN),
    ('DELETE', r'/admin/pests/(?P<pk>\d+)/', 'admin_delete_pest', ADMIN),
    ('POST', r'/admin/pests/(?P<pk>\d+)/toggle_publish/', 'admin_toggle_publish', ADMIN),
    ('GET', r'/admin/alerts/', 'admin_list_alerts', ADMIN),
    ('POST', r'/admin/alerts/', 'admin_create_alert', ADMIN),
    ('PUT', r'/admin/alerts/(?P<pk>\d+)/', 'admin_update_alert', ADMIN),
    ('DELETE', r'/admin/alerts/(?P<pk>\d+)/', 'admin_delete_alert', ADMIN),
    ('POST', r'/admin/alerts/(?P<pk>\d+)/toggle_active/', 'admin_toggle_active', ADMIN),
    ('GET', r'/admin/activity-logs/', 'admin_list_activities', ADMIN),
    # Super admin database
    ('GET', r'/super-admin/database/tables/', 'db_tables', SUPER_ADMIN),
    ('GET', r'/super-admin/database/table_data/', 'db_table_data', SUPER_ADMIN),
    ('PUT', r'/super-admin/database/update_row/', 'db_update_row', SUPER_ADMIN),
    ('DELETE', r'/super-admin/database/delete_row/', 'db_delete_row', SUPER_ADMIN),
    ('POST', r'/super-admin/database/create_row/', 'db_create_row', SUPER_ADMIN),
    ('POST', r'/super-admin/database/execute_query/', 'db_execute_query', SUPER_ADMIN),
]

TABLES = [
    'users', 'detections', 'farms', 'farm_requests', 'pests',
    'alerts', 'notifications', 'activities', 'verification_requests',
]

SELECT_QUERY = re.compile(r'^\s*select\s+\*\s+from\s+(?P<table>\w+)\s*;?\s*$', re.IGNORECASE)


class MockRequest:
    def __init__(self, method, path, params, json, data, files, headers):
        self.method = method
        self.path = path
        self.params = params
        self.json = json
        self.data = data
        self.files = files
        self.headers = headers
        self.user = None

    @property
    def body(self):
        """JSON body or form fields, whichever the caller sent."""
        if self.json is not None:
            return self.json
        return self.data or {}


def seed_data(now=None):
    now = now or timezone.now()
    day = datetime.timedelta(days=1)
    users = [
        {'id': 1, 'username': 'farmer', 'email': 'farmer@example.com', 'first_name': 'Juan',
         'last_name': 'Dela Cruz', 'phone': '09123456789', 'role': 'farmer', 'is_verified': True,
         'date_joined': now - 30 * day},
        {'id': 2, 'username': 'admin', 'email': 'admin@example.com', 'first_name': 'Maria',
         'last_name': 'Santos', 'phone': '', 'role': 'admin', 'is_verified': True,
         'date_joined': now - 60 * day},
        {'id': 3, 'username': 'superadmin', 'email': 'root@example.com', 'first_name': 'Jose',
         'last_name': 'Reyes', 'phone': '', 'role': 'super_admin', 'is_verified': True,
         'date_joined': now - 90 * day},
        {'id': 4, 'username': 'pedro', 'email': 'pedro@example.com', 'first_name': 'Pedro',
         'last_name': 'Garcia', 'phone': '', 'role': 'farmer', 'is_verified': False,
         'date_joined': now - 2 * day},
    ]
    farms = [
        {'id': 1, 'user': 1, 'user_name': 'farmer', 'name': 'Rice Field A', 'lat': 15.2047,
         'lng': 120.5947, 'size': 5, 'crop_type': 'Rice', 'is_verified': True, 'created_at': now},
        {'id': 2, 'user': 1, 'user_name': 'farmer', 'name': 'Corn Field B', 'lat': 15.2147,
         'lng': 120.6047, 'size': 3, 'crop_type': 'Corn', 'is_verified': True, 'created_at': now},
    ]
    detections = [
        {'id': 1, 'user': 1, 'user_name': 'farmer', 'pest_name': 'Brown Planthopper',
         'crop_type': 'rice', 'severity': 'high', 'confidence': 0.92, 'detected_at': now,
         'reported_at': None, 'latitude': 15.2047, 'longitude': 120.5947,
         'address': 'Magalang, Pampanga', 'image': None, 'status': 'verified', 'active': True,
         'farm_id': 1, 'farm_name': 'Rice Field A'},
        {'id': 2, 'user': 1, 'user_name': 'farmer', 'pest_name': 'Fall Armyworm',
         'crop_type': 'corn', 'severity': 'critical', 'confidence': 0.88, 'detected_at': now - day,
         'reported_at': None, 'latitude': 15.2147, 'longitude': 120.6047,
         'address': 'Magalang, Pampanga', 'image': None, 'status': 'pending', 'active': True,
         'farm_id': 2, 'farm_name': 'Corn Field B'},
    ]
    pests = [
        {'id': 1, 'name': 'Brown Planthopper', 'scientific_name': 'Nilaparvata lugens',
         'crop_affected': 'rice',
         'description': 'A serious rice pest that feeds on plant sap, causing hopper burn and '
                        'transmitting viruses.',
         'symptoms': 'Yellowing and wilting of leaves, stunted growth, hopper burn appearance on leaves.',
         'control_methods': 'Use resistant varieties, apply insecticides (imidacloprid, buprofezin), '
                            'maintain proper water management, introduce natural predators.',
         'prevention': 'Monitor fields regularly, avoid excessive nitrogen fertilizer, maintain '
                       'balanced ecosystem with natural predators.',
         'image_url': 'https://example.com/brown-planthopper.jpg', 'is_published': True},
        {'id': 2, 'name': 'Fall Armyworm', 'scientific_name': 'Spodoptera frugiperda',
         'crop_affected': 'corn',
         'description': 'A destructive moth larva that feeds on corn leaves, stalks, and ears.',
         'symptoms': 'Irregular holes in leaves, sawdust-like frass near whorl, damaged tassels and ears.',
         'control_methods': 'Early morning hand-picking, apply Bt-based biopesticides, use chemical '
                            'insecticides (chlorantraniliprole, emamectin benzoate).',
         'prevention': 'Crop rotation, remove crop residues, use pheromone traps, plant early '
                       'maturing varieties.',
         'image_url': 'https://example.com/fall-armyworm.jpg', 'is_published': True},
        {'id': 3, 'name': 'Rice Stem Borer', 'scientific_name': 'Scirpophaga incertulas',
         'crop_affected': 'rice',
         'description': 'A major rice pest that bores into rice stems causing deadhearts and whiteheads.',
         'symptoms': 'Deadhearts in vegetative stage, whiteheads in reproductive stage, hollow stems.',
         'control_methods': 'Apply granular insecticides (cartap, fipronil), use light traps, '
                            'remove affected plants.',
         'prevention': 'Use resistant varieties, proper timing of planting, remove stubbles after '
                       'harvest, maintain field sanitation.',
         'image_url': 'https://example.com/rice-stem-borer.jpg', 'is_published': True},
    ]
    alerts = [
        {'id': 1, 'title': 'Brown Planthopper outbreak',
         'message': 'High planthopper counts reported around Magalang. Inspect the base of your rice plants.',
         'alert_type': 'warning', 'target_area': 'Magalang', 'is_active': True,
         'created_at': now - day, 'expires_at': now + 7 * day},
        {'id': 2, 'title': 'Armyworm season ended', 'message': 'Monitoring returns to normal.',
         'alert_type': 'info', 'target_area': '', 'is_active': False,
         'created_at': now - 20 * day, 'expires_at': None},
    ]
    notifications = [
        {'id': 1, 'user': 1, 'notification_type': 'detection_verified', 'title': 'Detection verified',
         'message': 'Your Brown Planthopper report was verified.', 'is_read': False,
         'created_at': now - datetime.timedelta(minutes=5)},
        {'id': 2, 'user': 1, 'notification_type': 'farm_approved', 'title': 'Farm approved',
         'message': 'Rice Field A is now on the map.', 'is_read': False,
         'created_at': now - datetime.timedelta(hours=3)},
        {'id': 3, 'user': 1, 'notification_type': 'alert', 'title': 'New alert',
         'message': 'Brown Planthopper outbreak', 'is_read': True, 'created_at': now - 2 * day},
    ]
    activities = [
        {'id': 1, 'user': 1, 'user_name': 'farmer', 'user_role': 'farmer', 'action': 'detected_pest',
         'details': 'Pest: Brown Planthopper', 'ip_address': '10.0.0.5', 'timestamp': now},
        {'id': 2, 'user': 2, 'user_name': 'admin', 'user_role': 'admin', 'action': 'verified_detection',
         'details': 'Detection ID: 1', 'ip_address': '10.0.0.2', 'timestamp': now - 3 * day},
        {'id': 3, 'user': 1, 'user_name': 'farmer', 'user_role': 'farmer', 'action': 'user_logged_in',
         'details': '', 'ip_address': '10.0.0.5', 'timestamp': now - 10 * day},
    ]
    return {
        'users': users,
        'detections': detections,
        'farms': farms,
        'farm_requests': [],
        'pests': pests,
        'alerts': alerts,
        'notifications': notifications,
        'activities': activities,
        'verification_requests': [],
    }


class MockBackend:
    def __init__(self, data=None, preview_result=None):
        self.data = data if data is not None else seed_data()
        self.passwords = {user['username']: MOCK_PASSWORD for user in self.data['users']}
        self.access_tokens = {}
        self.refresh_tokens = {}
        self.preview_result = preview_result or copy.deepcopy(DEFAULT_PREVIEW)
        self.preview_error = None
        self.requests = []
        self.routes = [
            (method, re.compile(f'^{pattern}$'), handler, access)
            for method, pattern, handler, access in ROUTES
        ]

    # ==================== TRANSPORT ====================
    def request(self, method, path, params=None, json=None, data=None, files=None, headers=None):
        parts = urlsplit(path)
        merged = dict(parse_qsl(parts.query))
        merged.update({key: str(value) for key, value in (params or {}).items()})
        request = MockRequest(method, parts.path, merged, json, data, files, headers or {})
        self.requests.append(request)

        for route_method, pattern, handler, access in self.routes:
            match = pattern.match(parts.path)
            if match is None or route_method != method:
                continue
            denied = self._check_access(request, access)
            if denied is not None:
                return self._respond(*denied)
            return self._respond(*getattr(self, handler)(request, **match.groupdict()))

        logger.warning("Mock API has no route for %s %s", method, path)
        return self._respond(status.HTTP_404_NOT_FOUND, NOT_FOUND)

    def _respond(self, status_code, body=None):
        if body is not None:
            body = json.loads(json.dumps(body, cls=DjangoJSONEncoder))
        return TransportResponse(status_code, body)

    def _check_access(self, request, access):
        if access == PUBLIC:
            return None
        header = request.headers.get('Authorization', '')
        if not header.startswith('Bearer '):
            return status.HTTP_401_UNAUTHORIZED, NOT_AUTHENTICATED
        user_id = self.access_tokens.get(header[len('Bearer '):])
        request.user = self._find('users', user_id)
        if request.user is None:
            return status.HTTP_401_UNAUTHORIZED, TOKEN_INVALID
        role = request.user['role']
        if access == ADMIN and role not in ADMIN_ROLES:
            return status.HTTP_403_FORBIDDEN, FORBIDDEN
        if access == SUPER_ADMIN and role != 'super_admin':
            return status.HTTP_403_FORBIDDEN, FORBIDDEN
        return None

    # ==================== HELPERS ====================
    def issue_tokens(self, user):
        access = f'mock-access-{uuid.uuid4().hex}'
        refresh = f'mock-refresh-{uuid.uuid4().hex}'
        self.access_tokens[access] = user['id']
        self.refresh_tokens[refresh] = user['id']
        return {'access': access, 'refresh': refresh}

    def expire_access_tokens(self):
        """Invalidate every access token, as if they had timed out."""
        self.access_tokens.clear()

    def _find(self, table, pk):
        if pk is None:
            return None
        pk = int(pk)
        for row in self.data[table]:
            if row['id'] == pk:
                return row
        return None

    def _next_id(self, table):
        return max((row['id'] for row in self.data[table]), default=0) + 1

    def _remove(self, table, pk):
        row = self._find(table, pk)
        if row is None:
            return status.HTTP_404_NOT_FOUND, NOT_FOUND
        self.data[table].remove(row)
        return status.HTTP_204_NO_CONTENT, None

    def _log(self, user, action, details=''):
        self.data['activities'].append({
            'id': self._next_id('activities'),
            'user': user['id'],
            'user_name': user['username'],
            'user_role': user['role'],
            'action': action,
            'details': details,
            'ip_address': '127.0.0.1',
            'timestamp': timezone.now(),
        })

    def _paginate(self, items, params):
        page_size = int(params.get('page_size') or DEFAULT_PAGE_SIZE)
        page = int(params.get('page') or 1)
        start = (page - 1) * page_size
        return {
            'count': len(items),
            'next': None if start + page_size >= len(items) else f'?page={page + 1}',
            'previous': None if page == 1 else f'?page={page - 1}',
            'results': items[start:start + page_size],
        }

    @staticmethod
    def _newest_first(items, field):
        return sorted(items, key=lambda item: item.get(field) or timezone.now(), reverse=True)

    @staticmethod
    def _as_list(value):
        if isinstance(value, str):
            try:
                value = json.loads(value)
            except ValueError:
                return [value] if value else []
        return value if isinstance(value, list) else []

    def _user_view(self, user):
        return {key: value for key, value in user.items() if key != 'notification_settings'}

    # ==================== AUTH ====================
    def login(self, request):
        body = request.body
        user = next((u for u in self.data['users'] if u['username'] == body.get('username')), None)
        if user is None or self.passwords.get(user['username']) != body.get('password'):
            return status.HTTP_400_BAD_REQUEST, {'non_field_errors': ['Invalid credentials']}
        self._log(user, 'user_logged_in')
        return status.HTTP_200_OK, {'user': self._user_view(user), 'tokens': self.issue_tokens(user)}

    def register(self, request):
        body = request.body
        errors = {}
        for field in ('username', 'email', 'password'):
            if not body.get(field):
                errors[field] = ['This field is required.']
        if any(u['username'] == body.get('username') for u in self.data['users']):
            errors['username'] = ['A user with that username already exists.']
        if body.get('password') != body.get('password_confirm'):
            errors.setdefault('password', []).append("Passwords don't match")
        if errors:
            return status.HTTP_400_BAD_REQUEST, errors

        user = {
            'id': self._next_id('users'),
            'username': body['username'],
            'email': body['email'],
            'first_name': body.get('first_name', ''),
            'last_name': body.get('last_name', ''),
            'phone': body.get('phone', ''),
            'role': 'farmer',
            'is_verified': False,
            'date_joined': timezone.now(),
        }
        self.data['users'].append(user)
        self.passwords[user['username']] = body['password']
        self._log(user, 'user_registered')
        return status.HTTP_201_CREATED, {'user': self._user_view(user), 'tokens': self.issue_tokens(user)}

    def refresh_token(self, request):
        user_id = self.refresh_tokens.get(request.body.get('refresh'))
        user = self._find('users', user_id)
        if user is None:
            return status.HTTP_401_UNAUTHORIZED, {'detail': 'Token is invalid or expired',
                                                  'code': 'token_not_valid'}
        access = f'mock-access-{uuid.uuid4().hex}'
        self.access_tokens[access] = user['id']
        return status.HTTP_200_OK, {'access': access}

    def logout(self, request):
        refresh = request.body.get('refresh_token')
        if refresh not in self.refresh_tokens:
            return status.HTTP_400_BAD_REQUEST, {'error': 'Token is invalid or expired'}
        del self.refresh_tokens[refresh]
        self._log(request.user, 'user_logged_out')
        return status.HTTP_200_OK, {'message': 'Logout successful'}

    def profile(self, request):
        return status.HTTP_200_OK, self._user_view(request.user)

    def update_profile(self, request):
        for field in ('first_name', 'last_name', 'email', 'phone'):
            if field in request.body:
                request.user[field] = request.body[field]
        return status.HTTP_200_OK, {'message': 'Profile updated successfully',
                                    'user': self._user_view(request.user)}

    def change_password(self, request):
        body = request.body
        username = request.user['username']
        if self.passwords.get(username) != body.get('current_password'):
            return status.HTTP_400_BAD_REQUEST, {'error': 'Current password is incorrect'}
        if len(body.get('new_password') or '') < 8:
            return status.HTTP_400_BAD_REQUEST, {'error': 'Password must be at least 8 characters long'}
        self.passwords[username] = body['new_password']
        return status.HTTP_200_OK, {'message': 'Password changed successfully'}

    def notification_settings(self, request):
        preferences = request.user.setdefault('notification_settings', {})
        preferences.update(request.body)
        return status.HTTP_200_OK, {'message': 'Notification settings updated',
                                    'settings': preferences}

    def create_verification_request(self, request):
        body = request.body
        if not body.get('rsbsa_number'):
            return status.HTTP_400_BAD_REQUEST, {'rsbsa_number': ['This field is required.']}
        if not (request.files or {}).get('valid_id_image'):
            return status.HTTP_400_BAD_REQUEST, {'valid_id_image': ['No file was submitted.']}
        record = {
            'id': self._next_id('verification_requests'),
            'user': request.user['id'],
            'user_name': request.user['username'],
            'rsbsa_number': body['rsbsa_number'],
            'notes': body.get('notes', ''),
            'status': 'pending',
            'review_notes': '',
            'created_at': timezone.now(),
        }
        self.data['verification_requests'].append(record)
        return status.HTTP_201_CREATED, record

    def my_verification_request(self, request):
        mine = [r for r in self.data['verification_requests'] if r['user'] == request.user['id']]
        if not mine:
            return status.HTTP_404_NOT_FOUND, {'detail': 'No verification request found'}
        return status.HTTP_200_OK, mine[-1]

    # ==================== DETECTIONS ====================
    def _visible_detections(self, user):
        if user['role'] in ADMIN_ROLES:
            return list(self.data['detections'])
        return [d for d in self.data['detections'] if d['user'] == user['id'] or d['status'] == 'verified']

    def list_detections(self, request):
        detections = self._visible_detections(request.user)
        if request.params.get('my_detections'):
            detections = [d for d in detections if d['user'] == request.user['id']]
        detections = self._newest_first(detections, 'detected_at')
        return status.HTTP_200_OK, self._paginate(detections, request.params)

    def preview_detection(self, request):
        if not (request.files or {}).get('image'):
            return status.HTTP_400_BAD_REQUEST, {'error': 'No image provided', 'retry': False}
        if self.preview_error is not None:
            return self.preview_error
        return status.HTTP_200_OK, copy.deepcopy(self.preview_result)

    def create_detection(self, request):
        body = request.body
        user = request.user
        now = timezone.now()
        try:
            latitude = float(body.get('latitude', 0))
            longitude = float(body.get('longitude', 0))
        except (TypeError, ValueError) as e:
            return status.HTTP_400_BAD_REQUEST, {'error': str(e)}

        farm = None
        if body.get('farm_id'):
            farm = self._find('farms', body['farm_id'])
            if farm is not None and farm['user'] != user['id']:
                farm = None

        detection = {
            'id': self._next_id('detections'),
            'user': user['id'],
            'user_name': user['username'],
            'crop_type': body.get('crop_type', 'rice'),
            'latitude': latitude,
            'longitude': longitude,
            'address': body.get('address', ''),
            'image': None,
            'status': 'pending',
            'farm_id': farm['id'] if farm else None,
            'farm_name': farm['name'] if farm else None,
        }
        extras = {}
        if (request.files or {}).get('image'):
            detection.update({
                'pest_name': body.get('pest_name') or 'Unknown Pest',
                'pest_type': body.get('pest_key', ''),
                'confidence': float(body.get('confidence') or 0.0),
                'severity': body.get('severity') or 'low',
                'description': body.get('symptoms', ''),
                'active': True,
                'detected_at': now,
                'reported_at': None,
                'image': f"/media/detections/{request.files['image'][0]}",
            })
            extras = {
                'scientific_name': body.get('scientific_name', ''),
                'symptoms': body.get('symptoms', ''),
                'control_methods': self._as_list(body.get('control_methods')),
                'prevention': self._as_list(body.get('prevention')),
            }
            self._log(user, 'detected_pest', f"Pest: {detection['pest_name']}")
        else:
            detection.update({
                'pest_name': body.get('pest_type', ''),
                'pest_type': body.get('pest_type', ''),
                'confidence': 0.0,
                'severity': body.get('severity', 'low'),
                'description': body.get('description', ''),
                'active': body.get('active', True),
                'detected_at': now,
                'reported_at': now,
            })
            self._log(user, 'reported_infestation', f"Pest: {detection['pest_name']}")
        self.data['detections'].append(detection)
        response = dict(detection, pest=detection['pest_name'])
        response.update(extras)
        return status.HTTP_201_CREATED, response

    def detection_statistics(self, request):
        return status.HTTP_200_OK, copy.deepcopy(MOCK_STATS)

    def heatmap_data(self, request):
        days = int(request.params.get('days', 30))
        since = timezone.now() - datetime.timedelta(days=days)
        points = []
        for d in self._visible_detections(request.user):
            when = d.get('reported_at') or d.get('detected_at')
            if not d.get('active') or when is None or when < since:
                continue
            points.append({
                'id': d['id'],
                'pest': d['pest_name'] or d.get('pest_type', ''),
                'severity': d['severity'],
                'lat': d['latitude'],
                'lng': d['longitude'],
                'farm_id': d.get('farm_id'),
                'reported_at': when,
                'active': d['active'],
                'status': d['status'],
            })
        return status.HTTP_200_OK, points

    def update_detection(self, request, pk):
        detection = self._find('detections', pk)
        if detection is None:
            return status.HTTP_404_NOT_FOUND, {'error': 'Detection not found'}
        if detection['user'] != request.user['id'] and request.user['role'] not in ADMIN_ROLES:
            return status.HTTP_403_FORBIDDEN, {'error': 'Permission denied'}
        body = request.body
        if 'active' in body:
            detection['active'] = body['active']
        if 'status' in body:
            detection['status'] = body['status']
        if not detection['active'] or detection['status'] == 'resolved':
            detection['status'] = 'resolved'
            detection['resolved_at'] = timezone.now()
        self._log(request.user, 'updated_detection', f"Detection ID: {detection['id']}")
        return status.HTTP_200_OK, detection

    # ==================== FARMS, PESTS, ALERTS ====================
    def list_farms(self, request):
        if request.user['role'] in ADMIN_ROLES:
            return status.HTTP_200_OK, self.data['farms']
        return status.HTTP_200_OK, [f for f in self.data['farms'] if f['user'] == request.user['id']]

    def list_farm_requests(self, request):
        mine = [r for r in self.data['farm_requests'] if r['user'] == request.user['id']]
        return status.HTTP_200_OK, mine

    def create_farm_request(self, request):
        body = request.body
        missing = {f: ['This field is required.'] for f in ('name', 'lat', 'lng') if body.get(f) in (None, '')}
        if missing:
            return status.HTTP_400_BAD_REQUEST, missing
        record = {
            'id': self._next_id('farm_requests'),
            'user': request.user['id'],
            'user_name': request.user['username'],
            'name': body['name'],
            'lat': float(body['lat']),
            'lng': float(body['lng']),
            'size': float(body.get('size') or 0) or None,
            'crop_type': body.get('crop_type', ''),
            'status': 'pending',
            'review_notes': '',
            'created_at': timezone.now(),
        }
        self.data['farm_requests'].append(record)
        self._log(request.user, 'submitted_farm_request', f"Farm: {record['name']}")
        return status.HTTP_201_CREATED, record

    def list_pests(self, request):
        return status.HTTP_200_OK, [p for p in self.data['pests'] if p.get('is_published', True)]

    def my_alerts(self, request):
        alerts = [a for a in self.data['alerts'] if a['is_active']]
        return status.HTTP_200_OK, {'alerts': alerts, 'count': len(alerts)}

    # ==================== NOTIFICATIONS ====================
    def _notifications(self, user):
        mine = [n for n in self.data['notifications'] if n['user'] == user['id']]
        return self._newest_first(mine, 'created_at')

    def list_notifications(self, request):
        mine = self._notifications(request.user)
        return status.HTTP_200_OK, {
            'results': mine,
            'unread_count': sum(1 for n in mine if not n['is_read']),
        }

    def unread_count(self, request):
        mine = self._notifications(request.user)
        return status.HTTP_200_OK, {'unread_count': sum(1 for n in mine if not n['is_read'])}

    def mark_read(self, request, pk):
        notification = self._find('notifications', pk)
        if notification is None or notification['user'] != request.user['id']:
            return status.HTTP_404_NOT_FOUND, NOT_FOUND
        notification['is_read'] = True
        return status.HTTP_200_OK, {'message': 'Notification marked as read'}

    def mark_all_read(self, request):
        for notification in self._notifications(request.user):
            notification['is_read'] = True
        return status.HTTP_200_OK, {'message': 'All notifications marked as read'}

    # ==================== ADMIN: USERS ====================
    def admin_list_users(self, request):
        return status.HTTP_200_OK, [self._user_view(u) for u in self.data['users']]

    def admin_user_statistics(self, request):
        users = self.data['users']
        verified = sum(1 for u in users if u['is_verified'])
        return status.HTTP_200_OK, {
            'total_users': len(users),
            'farmers': sum(1 for u in users if u['role'] == 'farmer'),
            'experts': sum(1 for u in users if u['role'] == 'expert'),
            'admins': sum(1 for u in users if u['role'] in ADMIN_ROLES),
            'verified_users': verified,
            'unverified_users': len(users) - verified,
        }

    def admin_verify_user(self, request, pk):
        user = self._find('users', pk)
        if user is None:
            return status.HTTP_404_NOT_FOUND, NOT_FOUND
        user['is_verified'] = True
        self._log(request.user, 'verified_user', f"User: {user['username']}")
        return status.HTTP_200_OK, {'message': f"User {user['username']} verified successfully"}

    def admin_change_role(self, request, pk):
        user = self._find('users', pk)
        if user is None:
            return status.HTTP_404_NOT_FOUND, NOT_FOUND
        role = request.body.get('role')
        if role not in ('farmer', 'expert', 'admin'):
            return status.HTTP_400_BAD_REQUEST, {'error': 'Invalid role'}
        user['role'] = role
        self._log(request.user, 'changed_user_role', f"User: {user['username']} -> {role}")
        return status.HTTP_200_OK, {'message': f'User role changed to {role}'}

    def admin_delete_user(self, request, pk):
        return self._remove('users', pk)

    def admin_list_verification_requests(self, request):
        return status.HTTP_200_OK, self.data['verification_requests']

    def admin_review_verification_request(self, request, pk, action):
        record = self._find('verification_requests', pk)
        if record is None:
            return status.HTTP_404_NOT_FOUND, NOT_FOUND
        notes = request.body.get('review_notes', '')
        if action == 'reject' and not notes:
            return status.HTTP_400_BAD_REQUEST, {'error': 'Please provide a reason for rejection.'}
        record['status'] = 'approved' if action == 'approve' else 'rejected'
        record['review_notes'] = notes
        if action == 'approve':
            user = self._find('users', record['user'])
            if user is not None:
                user['is_verified'] = True
        return status.HTTP_200_OK, {'message': f"Verification request {record['status']}"}

    # ==================== ADMIN: FARMS ====================
    def admin_list_farms(self, request):
        return status.HTTP_200_OK, self.data['farms']

    def admin_farm_statistics(self, request):
        farms = self.data['farms']
        verified = sum(1 for f in farms if f['is_verified'])
        by_crop = {}
        for farm in farms:
            if farm.get('crop_type'):
                by_crop[farm['crop_type']] = by_crop.get(farm['crop_type'], 0) + 1
        return status.HTTP_200_OK, {
            'total_farms': len(farms),
            'verified_farms': verified,
            'unverified_farms': len(farms) - verified,
            'by_crop_type': by_crop,
        }

    def admin_verify_farm(self, request, pk):
        farm = self._find('farms', pk)
        if farm is None:
            return status.HTTP_404_NOT_FOUND, NOT_FOUND
        farm['is_verified'] = True
        self._log(request.user, 'verified_farm', f"Farm: {farm['name']}")
        return status.HTTP_200_OK, {'message': f"Farm {farm['name']} verified successfully"}

    def admin_delete_farm(self, request, pk):
        return self._remove('farms', pk)

    def admin_list_farm_requests(self, request):
        return status.HTTP_200_OK, self._newest_first(self.data['farm_requests'], 'created_at')

    def admin_review_farm_request(self, request, pk, action):
        record = self._find('farm_requests', pk)
        if record is None:
            return status.HTTP_404_NOT_FOUND, NOT_FOUND
        if record['status'] != 'pending':
            return status.HTTP_400_BAD_REQUEST, {'error': f"Request already {record['status']}"}
        notes = request.body.get('review_notes', '')
        if action == 'reject' and not notes:
            return status.HTTP_400_BAD_REQUEST, {'error': 'Please provide a reason for rejection'}
        record['review_notes'] = notes
        if action == 'reject':
            record['status'] = 'rejected'
            return status.HTTP_200_OK, {'message': 'Farm request rejected'}

        record['status'] = 'approved'
        owner = self._find('users', record['user'])
        farm = {
            'id': self._next_id('farms'),
            'user': record['user'],
            'user_name': owner['username'] if owner else record.get('user_name', ''),
            'name': record['name'],
            'lat': record['lat'],
            'lng': record['lng'],
            'size': record['size'],
            'crop_type': record['crop_type'],
            'is_verified': True,
            'created_at': timezone.now(),
        }
        self.data['farms'].append(farm)
        record['approved_farm_id'] = farm['id']
        self._log(request.user, 'approved_farm_request', f"Farm: {farm['name']}")
        return status.HTTP_200_OK, {'message': 'Farm request approved', 'farm_id': farm['id']}

    # ==================== ADMIN: DETECTIONS ====================
    def admin_list_detections(self, request):
        detections = self._newest_first(self.data['detections'], 'detected_at')
        return status.HTTP_200_OK, self._paginate(detections, request.params)

    def admin_detection_statistics(self, request):
        detections = self.data['detections']

        def count(field, value):
            return sum(1 for d in detections if d.get(field) == value)

        return status.HTTP_200_OK, {
            'total_detections': len(detections),
            'pending': count('status', 'pending'),
            'verified': count('status', 'verified'),
            'rejected': count('status', 'rejected'),
            'resolved': count('status', 'resolved'),
            'by_severity': {s: count('severity', s) for s in ('low', 'medium', 'high', 'critical')},
        }

    def admin_pending_verifications(self, request):
        return status.HTTP_200_OK, [d for d in self.data['detections'] if d['status'] == 'pending']

    def admin_review_detection(self, request, pk, action):
        detection = self._find('detections', pk)
        if detection is None:
            return status.HTTP_404_NOT_FOUND, NOT_FOUND
        verified = action == 'verify_detection'
        detection['status'] = 'verified' if verified else 'rejected'
        detection['verified_by'] = request.user['id']
        detection['admin_notes'] = request.body.get('notes', '')
        self._log(request.user, 'verified_detection' if verified else 'rejected_detection',
                  f"Detection ID: {detection['id']}")
        return status.HTTP_200_OK, {
            'message': 'Detection verified successfully' if verified else 'Detection rejected',
        }

    def admin_delete_detection(self, request, pk):
        return self._remove('detections', pk)

    # ==================== ADMIN: PESTS & ALERTS ====================
    def _create(self, table, body, defaults):
        record = dict(defaults)
        record.update(body)
        record['id'] = self._next_id(table)
        self.data[table].append(record)
        return status.HTTP_201_CREATED, record

    def _update(self, table, pk, body):
        record = self._find(table, pk)
        if record is None:
            return status.HTTP_404_NOT_FOUND, NOT_FOUND
        record.update({key: value for key, value in body.items() if key != 'id'})
        return status.HTTP_200_OK, record

    def admin_list_pests(self, request):
        return status.HTTP_200_OK, self.data['pests']

    def admin_create_pest(self, request):
        if not request.body.get('name'):
            return status.HTTP_400_BAD_REQUEST, {'name': ['This field is required.']}
        return self._create('pests', request.body, {
            'scientific_name': '', 'crop_affected': '', 'description': '', 'symptoms': '',
            'control_methods': '', 'prevention': '', 'image_url': None, 'is_published': True,
        })

    def admin_update_pest(self, request, pk):
        return self._update('pests', pk, request.body)

    def admin_delete_pest(self, request, pk):
        return self._remove('pests', pk)

    def admin_toggle_publish(self, request, pk):
        pest = self._find('pests', pk)
        if pest is None:
            return status.HTTP_404_NOT_FOUND, NOT_FOUND
        pest['is_published'] = not pest.get('is_published', True)
        status_text = 'published' if pest['is_published'] else 'unpublished'
        return status.HTTP_200_OK, {'message': f'Pest info {status_text} successfully'}

    def admin_list_alerts(self, request):
        return status.HTTP_200_OK, self.data['alerts']

    def admin_create_alert(self, request):
        if not request.body.get('title'):
            return status.HTTP_400_BAD_REQUEST, {'title': ['This field is required.']}
        return self._create('alerts', request.body, {
            'message': '', 'alert_type': 'info', 'target_area': '', 'is_active': True,
            'created_at': timezone.now(), 'expires_at': None,
        })

    def admin_update_alert(self, request, pk):
        return self._update('alerts', pk, request.body)

    def admin_delete_alert(self, request, pk):
        return self._remove('alerts', pk)

    def admin_toggle_active(self, request, pk):
        alert = self._find('alerts', pk)
        if alert is None:
            return status.HTTP_404_NOT_FOUND, NOT_FOUND
        alert['is_active'] = not alert['is_active']
        status_text = 'activated' if alert['is_active'] else 'deactivated'
        return status.HTTP_200_OK, {'message': f'Alert {status_text} successfully'}

    def admin_list_activities(self, request):
        activities = self._newest_first(self.data['activities'], 'timestamp')
        if request.params.get('user_id'):
            activities = [a for a in activities if str(a['user']) == request.params['user_id']]
        return status.HTTP_200_OK, self._paginate(activities, request.params)

    # ==================== SUPER ADMIN DATABASE ====================
    def _table(self, name):
        if name not in TABLES:
            return None
        return self.data[name]

    def db_tables(self, request):
        return status.HTTP_200_OK, [{'name': name, 'count': len(self.data[name])} for name in TABLES]

    def db_table_data(self, request):
        rows = self._table(request.params.get('table'))
        if rows is None:
            return status.HTTP_400_BAD_REQUEST, {'error': 'Invalid table'}
        page_size = int(request.params.get('page_size') or 50)
        page = int(request.params.get('page') or 1)
        columns = sorted({key for row in rows for key in row})
        start = (page - 1) * page_size
        return status.HTTP_200_OK, {
            'table': request.params['table'],
            'columns': columns,
            'data': rows[start:start + page_size],
            'total_count': len(rows),
            'total_pages': max(1, -(-len(rows) // page_size)),
            'page': page,
        }

    def db_update_row(self, request):
        body = request.body
        if self._table(body.get('table')) is None:
            return status.HTTP_400_BAD_REQUEST, {'error': 'Invalid table'}
        code, _ = self._update(body['table'], body.get('id'), body.get('updates') or {})
        if code != status.HTTP_200_OK:
            return code, {'error': 'Row not found'}
        return status.HTTP_200_OK, {'message': 'Row updated successfully'}

    def db_delete_row(self, request):
        table = request.params.get('table')
        if self._table(table) is None:
            return status.HTTP_400_BAD_REQUEST, {'error': 'Invalid table'}
        code, _ = self._remove(table, request.params.get('id'))
        if code != status.HTTP_204_NO_CONTENT:
            return code, {'error': 'Row not found'}
        return status.HTTP_200_OK, {'message': 'Row deleted successfully'}

    def db_create_row(self, request):
        body = request.body
        if self._table(body.get('table')) is None:
            return status.HTTP_400_BAD_REQUEST, {'error': 'Invalid table'}
        _, record = self._create(body['table'], body.get('data') or {}, {})
        return status.HTTP_201_CREATED, {'message': 'Row created successfully', 'id': record['id']}

    def db_execute_query(self, request):
        match = SELECT_QUERY.match(request.body.get('query') or '')
        if match is None:
            return status.HTTP_400_BAD_REQUEST, {'error': 'Only SELECT * FROM <table> queries are supported'}
        rows = self._table(match.group('table'))
        if rows is None:
            return status.HTTP_400_BAD_REQUEST, {'error': f"Unknown table {match.group('table')}"}
        return status.HTTP_200_OK, {
            'columns': sorted({key for row in rows for key in row}),
            'data': rows,
            'count': len(rows),
        }
