"""
Admin and super-admin screens.

Each collection mirrors one of the API's admin viewsets: ``load()`` pulls
the whole list, ``filtered()`` narrows it locally, and every mutation is
followed by a fresh ``load()`` so the table always shows server state.
"""
import csv
import datetime
import io
import logging

from django.conf import settings
from django.utils import timezone

from . import filters
from .exceptions import RequestValidationError
from .http import fetch_concurrently
from .serializers import (
    AlertSerializer,
    DatabaseTableSerializer,
    DetectionSerializer,
    FarmRequestSerializer,
    FarmSerializer,
    PestInfoSerializer,
    QueryResultSerializer,
    TableDataSerializer,
    UserActivitySerializer,
    UserSerializer,
    VerificationRequestSerializer,
    decode_list,
    decode_object,
)

logger = logging.getLogger(__name__)

ASSIGNABLE_ROLES = ['farmer', 'expert', 'admin']
REJECTION_REASON_REQUIRED = 'Please provide a reason for rejection'


class AdminCollection:
    path = None
    serializer_class = None
    search_fields = ()
    page_size = None

    def __init__(self, client):
        self.client = client
        self.items = []

    def load(self):
        params = {'page_size': self.page_size} if self.page_size else None
        response = self.client.get(self.path, params=params)
        self.items = decode_list(response.data, self.serializer_class)
        logger.debug("Loaded %d records from %s", len(self.items), self.path)
        return self.items

    def detail_path(self, pk, action=None):
        if action:
            return f'{self.path}{pk}/{action}/'
        return f'{self.path}{pk}/'

    def perform_action(self, pk, action, payload=None):
        response = self.client.post(self.detail_path(pk, action), json=payload)
        logger.info("%s on %s%s", action, self.path, pk)
        self.load()
        return response.data

    def delete(self, pk):
        self.client.delete(self.detail_path(pk))
        logger.info("Deleted %s%s", self.path, pk)
        self.load()

    def statistics(self):
        return self.client.get(f'{self.path}statistics/').data

    def search(self, query, items=None):
        return filters.search(self.items if items is None else items, query, self.search_fields)


# ==================== USERS ====================
class AdminUsers(AdminCollection):
    path = '/admin/users/'
    serializer_class = UserSerializer
    search_fields = ('username', 'email', 'first_name', 'last_name')

    def __init__(self, client):
        super().__init__(client)
        self.verification_requests = []

    def filtered(self, search=None, role=None):
        return self.search(search, filters.exact(self.items, 'role', role))

    def verify(self, user_id):
        return self.perform_action(user_id, 'verify_user')

    def change_role(self, user_id, role):
        if role not in ASSIGNABLE_ROLES:
            raise RequestValidationError(f'Invalid role: {role}', retry=False)
        return self.perform_action(user_id, 'change_role', {'role': role})

    def load_verification_requests(self):
        response = self.client.get('/admin/verification-requests/')
        self.verification_requests = decode_list(response.data, VerificationRequestSerializer)
        return self.verification_requests

    def review_verification(self, request_id, action, review_notes=''):
        """Approve or reject a farmer's RSBSA verification request."""
        if action not in ('approve', 'reject'):
            raise ValueError(f'Unknown review action {action!r}')
        if action == 'reject' and not (review_notes or '').strip():
            raise RequestValidationError(f'{REJECTION_REASON_REQUIRED}.', retry=False)
        self.client.post(
            f'/admin/verification-requests/{request_id}/{action}/',
            json={'review_notes': review_notes or ''},
        )
        self.load_verification_requests()
        self.load()


# ==================== FARMS ====================
class AdminFarms(AdminCollection):
    path = '/admin/farms/'
    serializer_class = FarmSerializer
    search_fields = ('name', 'user_name', 'crop_type')

    def filtered(self, search=None, verified=None):
        return self.search(search, filters.flag(self.items, 'is_verified', verified))

    def verify(self, farm_id):
        return self.perform_action(farm_id, 'verify_farm')


class AdminFarmRequests(AdminCollection):
    path = '/admin/farm-requests/'
    serializer_class = FarmRequestSerializer
    search_fields = ('name', 'user_name', 'crop_type')

    def filtered(self, search=None, status=None):
        return self.search(search, filters.exact(self.items, 'status', status))

    def approve(self, request_id, review_notes=''):
        """Approving a request creates the farm on the server."""
        return self.perform_action(request_id, 'approve', {'review_notes': review_notes or ''})

    def reject(self, request_id, review_notes):
        if not (review_notes or '').strip():
            raise RequestValidationError(REJECTION_REASON_REQUIRED, retry=False)
        return self.perform_action(request_id, 'reject', {'review_notes': review_notes})

    def counts(self):
        counts = {'all': len(self.items), 'pending': 0, 'approved': 0, 'rejected': 0}
        for item in self.items:
            counts[item['status']] = counts.get(item['status'], 0) + 1
        return counts


# ==================== DETECTIONS ====================
class AdminDetections(AdminCollection):
    path = '/admin/detections/'
    serializer_class = DetectionSerializer
    search_fields = ('pest_name', 'user_name', 'farm_name')
    per_page = 10

    @property
    def page_size(self):
        return settings.ADMIN_PAGE_SIZE

    def filtered(self, search=None, status=None):
        return self.search(search, filters.exact(self.items, 'status', status))

    def page(self, items, number=1):
        return filters.paginate(items, number, self.per_page)

    def verify(self, detection_id, notes=''):
        return self.perform_action(detection_id, 'verify_detection', {'notes': notes or ''})

    def reject(self, detection_id, notes=''):
        return self.perform_action(detection_id, 'reject_detection', {'notes': notes or ''})

    def pending_verifications(self):
        response = self.client.get(f'{self.path}pending_verifications/')
        return decode_list(response.data, DetectionSerializer)


# ==================== PESTS & ALERTS ====================
class AdminPests(AdminCollection):
    path = '/admin/pests/'
    serializer_class = PestInfoSerializer
    search_fields = ('name', 'scientific_name', 'crop_affected')

    def filtered(self, search=None, crop=None, published=None):
        pests = filters.exact(self.items, 'crop_affected', crop, ignore_case=True)
        pests = filters.flag(pests, 'is_published', published)
        return self.search(search, pests)

    def save(self, data, pest_id=None):
        """Update the pest when ``pest_id`` is given, otherwise create it."""
        if pest_id:
            response = self.client.put(self.detail_path(pest_id), json=data)
        else:
            response = self.client.post(self.path, json=data)
        self.load()
        return response.data

    def toggle_publish(self, pest_id):
        return self.perform_action(pest_id, 'toggle_publish')


class AdminAlerts(AdminCollection):
    path = '/admin/alerts/'
    serializer_class = AlertSerializer
    search_fields = ('title', 'message', 'target_area')

    def filtered(self, search=None, active=None, alert_type=None):
        alerts = filters.flag(self.items, 'is_active', active)
        alerts = filters.exact(alerts, 'alert_type', alert_type)
        return self.search(search, alerts)

    def save(self, data, alert_id=None):
        if alert_id:
            response = self.client.put(self.detail_path(alert_id), json=data)
        else:
            response = self.client.post(self.path, json=data)
        self.load()
        return response.data

    def toggle_active(self, alert_id):
        return self.perform_action(alert_id, 'toggle_active')


# ==================== ACTIVITY LOGS ====================
CSV_HEADERS = ['Timestamp', 'User', 'Role', 'Action', 'Details', 'IP Address']


class AdminActivities(AdminCollection):
    path = '/admin/activity-logs/'
    serializer_class = UserActivitySerializer
    search_fields = ('user_name', 'action', 'details')

    def __init__(self, client):
        super().__init__(client)
        self.users = []

    def load_users(self):
        """Users for the user filter dropdown."""
        response = self.client.get(AdminUsers.path)
        self.users = decode_list(response.data, UserSerializer)
        return self.users

    def filtered(self, search=None, user=None, action=None, date_from=None, date_to=None):
        activities = self.items
        if not filters.is_unfiltered(user):
            activities = filters.exact(activities, 'user', int(user))
        activities = filters.contains(activities, 'action', action)
        activities = filters.date_range(activities, 'timestamp', date_from, date_to)
        return self.search(search, activities)

    def summary(self, activities=None, today=None):
        activities = self.items if activities is None else activities
        today = today or timezone.localdate()
        week_start = today - datetime.timedelta(days=6)
        return {
            'total': len(activities),
            'unique_users': len({a['user'] for a in activities}),
            'today': len(filters.date_range(activities, 'timestamp', today, today)),
            'last_7_days': len(filters.date_range(activities, 'timestamp', week_start, today)),
        }

    def export_csv(self, activities=None):
        activities = self.items if activities is None else activities
        buffer = io.StringIO()
        writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator='\n')
        writer.writerow(CSV_HEADERS)
        for activity in activities:
            timestamp = activity['timestamp']
            if isinstance(timestamp, datetime.datetime):
                timestamp = timezone.localtime(timestamp).strftime('%Y-%m-%d %H:%M:%S')
            writer.writerow([
                timestamp,
                activity.get('user_name') or '',
                activity.get('user_role') or '',
                activity.get('action') or '',
                activity.get('details') or '',
                activity.get('ip_address') or '',
            ])
        return buffer.getvalue()

    @staticmethod
    def export_filename(day=None):
        day = day or timezone.localdate()
        return f'activity-logs-{day.isoformat()}.csv'


# ==================== DATABASE ====================
class SuperAdminDatabase:
    """Raw table access for super admins."""

    path = '/super-admin/database/'

    def __init__(self, client):
        self.client = client
        self.table_list = []
        self.table = None
        self.page = 1
        self.page_size = 50
        self.current = None

    def tables(self):
        response = self.client.get(f'{self.path}tables/')
        self.table_list = decode_list(response.data, DatabaseTableSerializer, ('tables', 'results'))
        return self.table_list

    def table_data(self, table=None, page=None, page_size=None):
        self.table = table or self.table
        self.page = page or self.page
        self.page_size = page_size or self.page_size
        if not self.table:
            raise ValueError('No table selected')
        response = self.client.get(f'{self.path}table_data/', params={
            'table': self.table,
            'page': self.page,
            'page_size': self.page_size,
        })
        self.current = decode_object(response.data, TableDataSerializer)
        return self.current

    def search(self, query):
        rows = self.current['data'] if self.current else []
        return filters.search_values(rows, query)

    def update_row(self, row_id, updates, table=None):
        self.client.put(f'{self.path}update_row/', json={
            'table': table or self.table,
            'id': row_id,
            'updates': updates,
        })
        logger.info("Updated row %s in %s", row_id, table or self.table)
        return self.table_data(table)

    def delete_row(self, row_id, table=None):
        self.client.delete(f'{self.path}delete_row/', params={'table': table or self.table, 'id': row_id})
        logger.info("Deleted row %s from %s", row_id, table or self.table)
        return self.table_data(table)

    def create_row(self, data, table=None):
        self.client.post(f'{self.path}create_row/', json={'table': table or self.table, 'data': data})
        logger.info("Created row in %s", table or self.table)
        return self.table_data(table)

    def execute_query(self, query):
        if not query or not query.strip():
            raise RequestValidationError('Query is required', retry=False)
        response = self.client.post(f'{self.path}execute_query/', json={'query': query})
        return decode_object(response.data, QueryResultSerializer)


# ==================== DASHBOARD ====================
class AdminDashboard:
    RECENT_ACTIVITY_COUNT = 10

    def __init__(self, client):
        self.client = client
        self.user_stats = None
        self.farm_stats = None
        self.detection_stats = None
        self.recent_activities = []
        self.pending_verifications = []

    def load(self):
        get = self.client.get
        results = fetch_concurrently({
            'users': lambda: get('/admin/users/statistics/'),
            'farms': lambda: get('/admin/farms/statistics/'),
            'detections': lambda: get('/admin/detections/statistics/'),
            'activities': lambda: get(AdminActivities.path, params={'page_size': self.RECENT_ACTIVITY_COUNT}),
            'pending': lambda: get('/admin/detections/pending_verifications/'),
        })
        self.user_stats = results['users'].data
        self.farm_stats = results['farms'].data
        self.detection_stats = results['detections'].data
        self.recent_activities = decode_list(
            results['activities'].data, UserActivitySerializer,
        )[:self.RECENT_ACTIVITY_COUNT]
        self.pending_verifications = decode_list(results['pending'].data, DetectionSerializer)
        return self
