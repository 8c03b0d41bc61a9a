import datetime

from django.test import SimpleTestCase
from django.utils import timezone

from client.admin import (
    AdminActivities,
    AdminAlerts,
    AdminDashboard,
    AdminDetections,
    AdminFarmRequests,
    AdminFarms,
    AdminPests,
    AdminUsers,
    SuperAdminDatabase,
)
from client.exceptions import PermissionDeniedError, RequestValidationError
from client.services import AuthService, FarmService, Location

from .utils import make_image, mock_client


class AdminUsersTest(SimpleTestCase):
    def setUp(self):
        self.client, self.backend = mock_client('admin')
        self.users = AdminUsers(self.client)
        self.users.load()

    def test_load_and_filter(self):
        self.assertEqual(len(self.users.items), 4)
        self.assertEqual(len(self.users.filtered(role='farmer')), 2)
        self.assertEqual([u['username'] for u in self.users.filtered(search='maria')], ['admin'])
        self.assertEqual(len(self.users.filtered(search='', role='all')), 4)

    def test_verify_reloads(self):
        self.users.verify(4)
        pedro = next(u for u in self.users.items if u['id'] == 4)
        self.assertTrue(pedro['is_verified'])

    def test_change_role(self):
        self.users.change_role(4, 'expert')
        pedro = next(u for u in self.users.items if u['id'] == 4)
        self.assertEqual(pedro['role'], 'expert')

    def test_super_admin_role_cannot_be_assigned(self):
        sent = len(self.backend.requests)
        with self.assertRaises(RequestValidationError):
            self.users.change_role(4, 'super_admin')
        self.assertEqual(len(self.backend.requests), sent)

    def test_delete(self):
        self.users.delete(4)
        self.assertEqual(len(self.users.items), 3)

    def test_farmer_is_denied(self):
        client, _ = mock_client('farmer', self.backend)
        with self.assertRaises(PermissionDeniedError):
            AdminUsers(client).load()


class VerificationReviewTest(SimpleTestCase):
    def setUp(self):
        self.farmer, self.backend = mock_client('pedro')
        AuthService(self.farmer).submit_verification_request('03-54-12-001', make_image(), 'Barangay San Jose')
        self.admin, _ = mock_client('admin', self.backend)
        self.users = AdminUsers(self.admin)

    def test_reject_needs_reason(self):
        requests = self.users.load_verification_requests()
        with self.assertRaises(RequestValidationError) as ctx:
            self.users.review_verification(requests[0]['id'], 'reject', '  ')
        self.assertEqual(str(ctx.exception), 'Please provide a reason for rejection.')

    def test_approve_verifies_user(self):
        requests = self.users.load_verification_requests()
        self.users.review_verification(requests[0]['id'], 'approve')
        self.assertEqual(self.users.verification_requests[0]['status'], 'approved')
        pedro = next(u for u in self.users.items if u['username'] == 'pedro')
        self.assertTrue(pedro['is_verified'])

        mine = AuthService(self.farmer).my_verification_request()
        self.assertEqual(mine['status'], 'approved')


class FarmRequestsTest(SimpleTestCase):
    def setUp(self):
        farmer, self.backend = mock_client('farmer')
        FarmService(farmer).submit_farm_request('North Field', Location(15.3, 120.7), size=2, crop_type='Corn')
        self.admin, _ = mock_client('admin', self.backend)
        self.requests = AdminFarmRequests(self.admin)
        self.requests.load()

    def test_counts(self):
        self.assertEqual(self.requests.counts(), {'all': 1, 'pending': 1, 'approved': 0, 'rejected': 0})
        self.assertEqual(len(self.requests.filtered(status='approved')), 0)

    def test_approve_creates_farm(self):
        request_id = self.requests.items[0]['id']
        self.requests.approve(request_id, 'Looks good')
        self.assertEqual(self.requests.counts()['approved'], 1)

        farms = AdminFarms(self.admin)
        farms.load()
        self.assertIn('North Field', [f['name'] for f in farms.items])

        with self.assertRaises(RequestValidationError):
            self.requests.approve(request_id)

    def test_reject_needs_notes(self):
        with self.assertRaises(RequestValidationError):
            self.requests.reject(self.requests.items[0]['id'], '')
        self.requests.reject(self.requests.items[0]['id'], 'Outside service area')
        self.assertEqual(self.requests.items[0]['status'], 'rejected')
        self.assertEqual(self.requests.items[0]['review_notes'], 'Outside service area')


class AdminFarmsTest(SimpleTestCase):
    def test_filter_and_verify(self):
        client, backend = mock_client('admin')
        backend.data['farms'][1]['is_verified'] = False
        farms = AdminFarms(client)
        farms.load()
        self.assertEqual(len(farms.filtered(verified='unverified')), 1)
        self.assertEqual(len(farms.filtered(search='corn')), 1)

        farms.verify(2)
        self.assertEqual(farms.filtered(verified='unverified'), [])
        self.assertEqual(farms.statistics()['verified_farms'], 2)


class AdminDetectionsTest(SimpleTestCase):
    def setUp(self):
        self.client, self.backend = mock_client('admin')
        self.detections = AdminDetections(self.client)
        self.detections.load()

    def test_loads_with_large_page_size(self):
        self.assertEqual(self.backend.requests[-1].params['page_size'], '1000')
        self.assertEqual(len(self.detections.items), 2)

    def test_filter_and_page(self):
        pending = self.detections.filtered(status='pending')
        self.assertEqual([d['id'] for d in pending], [2])
        items, pages = self.detections.page(self.detections.items)
        self.assertEqual((len(items), pages), (2, 1))

    def test_verify_and_reject(self):
        self.assertEqual(len(self.detections.pending_verifications()), 1)
        self.detections.verify(2, 'Confirmed on site')
        verified = {d['id']: d for d in self.detections.filtered(status='verified')}
        self.assertEqual(verified[2]['admin_notes'], 'Confirmed on site')
        self.assertEqual(self.detections.pending_verifications(), [])

        self.detections.reject(1)
        self.assertEqual(len(self.detections.filtered(status='rejected')), 1)


class AdminPestsAndAlertsTest(SimpleTestCase):
    def setUp(self):
        self.client, self.backend = mock_client('admin')

    def test_pests(self):
        pests = AdminPests(self.client)
        pests.load()
        self.assertEqual(len(pests.filtered(crop='RICE')), 2)

        pests.toggle_publish(1)
        self.assertEqual([p['id'] for p in pests.filtered(published='unpublished')], [1])

        pests.save({'name': 'Rice Bug', 'scientific_name': 'Leptocorisa oratorius', 'crop_affected': 'rice'})
        self.assertEqual(len(pests.items), 4)

        pests.save({'name': 'BPH'}, pest_id=1)
        self.assertEqual(pests.filtered(search='bph')[0]['scientific_name'], 'Nilaparvata lugens')

    def test_alerts(self):
        alerts = AdminAlerts(self.client)
        alerts.load()
        self.assertEqual([a['id'] for a in alerts.filtered(active='active')], [1])
        self.assertEqual([a['id'] for a in alerts.filtered(alert_type='info')], [2])

        alerts.toggle_active(2)
        self.assertEqual(len(alerts.filtered(active='active')), 2)

        alerts.save({'title': 'Heavy rain', 'message': 'Drain the fields', 'alert_type': 'warning'})
        self.assertEqual(len(alerts.items), 3)


class AdminActivitiesTest(SimpleTestCase):
    def setUp(self):
        self.client, self.backend = mock_client('admin')
        self.activities = AdminActivities(self.client)

    def test_load_and_filter(self):
        self.activities.load()
        self.activities.load_users()
        self.assertEqual(len(self.activities.users), 4)
        self.assertEqual(len(self.activities.filtered(user='1')), 2)
        self.assertEqual(len(self.activities.filtered(action='verified')), 1)
        self.assertEqual(len(self.activities.filtered(search='planthopper')), 1)

    def test_summary(self):
        now = timezone.now()
        activities = [
            {'user': 1, 'timestamp': now},
            {'user': 2, 'timestamp': now - datetime.timedelta(days=3)},
            {'user': 1, 'timestamp': now - datetime.timedelta(days=10)},
        ]
        summary = self.activities.summary(activities, today=timezone.localdate(now))
        self.assertEqual(summary, {'total': 3, 'unique_users': 2, 'today': 1, 'last_7_days': 2})

    def test_summary_week_is_seven_days(self):
        today = datetime.date(2024, 6, 15)
        activities = [
            {'user': 1, 'timestamp': datetime.date(2024, 6, 9)},
            {'user': 1, 'timestamp': datetime.date(2024, 6, 8)},
        ]
        self.assertEqual(self.activities.summary(activities, today=today)['last_7_days'], 1)

    def test_export_csv(self):
        activity = {
            'timestamp': datetime.datetime(2024, 6, 15, 4, 30, tzinfo=datetime.timezone.utc),
            'user_name': 'farmer',
            'user_role': 'farmer',
            'action': 'detected_pest',
            'details': None,
            'ip_address': '10.0.0.5',
        }
        lines = self.activities.export_csv([activity]).splitlines()
        self.assertEqual(lines[0], '"Timestamp","User","Role","Action","Details","IP Address"')
        self.assertEqual(lines[1], '"2024-06-15 12:30:00","farmer","farmer","detected_pest","","10.0.0.5"')
        self.assertEqual(
            AdminActivities.export_filename(datetime.date(2024, 6, 15)), 'activity-logs-2024-06-15.csv',
        )


class SuperAdminDatabaseTest(SimpleTestCase):
    def setUp(self):
        self.client, self.backend = mock_client('superadmin')
        self.db = SuperAdminDatabase(self.client)

    def test_tables(self):
        tables = {t['name']: t['count'] for t in self.db.tables()}
        self.assertEqual(tables['pests'], 3)
        self.assertEqual(tables['farms'], 2)

    def test_rows(self):
        data = self.db.table_data('pests')
        self.assertEqual(data['total_count'], 3)
        self.assertEqual(data['page'], 1)
        self.assertEqual(len(self.db.search('planthopper')), 1)

        data = self.db.update_row(1, {'name': 'BPH'})
        self.assertEqual(next(r for r in data['data'] if r['id'] == 1)['name'], 'BPH')

        self.assertEqual(self.db.delete_row(3)['total_count'], 2)
        self.assertEqual(self.db.create_row({'name': 'Rice Bug'})['total_count'], 3)

    def test_execute_query(self):
        with self.assertRaises(RequestValidationError):
            self.db.execute_query('   ')
        result = self.db.execute_query('SELECT * FROM farms')
        self.assertEqual(result['count'], 2)
        with self.assertRaises(RequestValidationError):
            self.db.execute_query('DROP TABLE farms')

    def test_admin_is_denied(self):
        client, _ = mock_client('admin', self.backend)
        with self.assertRaises(PermissionDeniedError):
            SuperAdminDatabase(client).tables()


class AdminDashboardTest(SimpleTestCase):
    def test_load(self):
        client, _ = mock_client('admin')
        dashboard = AdminDashboard(client).load()
        self.assertEqual(dashboard.user_stats['total_users'], 4)
        self.assertEqual(dashboard.farm_stats['total_farms'], 2)
        self.assertEqual(dashboard.detection_stats['pending'], 1)
        self.assertEqual(len(dashboard.pending_verifications), 1)
        self.assertLessEqual(len(dashboard.recent_activities), 10)
