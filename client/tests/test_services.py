from django.test import SimpleTestCase

from client.exceptions import RequestValidationError, ServerError
from client.mock import MOCK_PASSWORD
from client.services import AuthService, Dashboard, FarmService, Location, inference_form
from client.session import Session

from .utils import fake_client, make_image, mock_client, respond

NEW_USER = {
    'username': 'ana',
    'email': 'ana@example.com',
    'password': 'secret-pass',
    'password_confirm': 'secret-pass',
    'first_name': 'Ana',
}


class AuthServiceTest(SimpleTestCase):
    def setUp(self):
        self.client, self.backend = mock_client(username=None)
        self.auth = AuthService(self.client)

    def test_login(self):
        user = self.auth.login('farmer', MOCK_PASSWORD)
        self.assertEqual(user['role'], 'farmer')
        self.assertTrue(self.client.session.is_authenticated)
        self.assertTrue(Session.load(self.client.session.store).is_authenticated)

    def test_bad_credentials(self):
        with self.assertRaises(RequestValidationError) as ctx:
            self.auth.login('farmer', 'wrong')
        self.assertEqual(str(ctx.exception), 'Invalid credentials')
        self.assertFalse(self.client.session.is_authenticated)

    def test_register(self):
        user = self.auth.register(NEW_USER)
        self.assertEqual(user['username'], 'ana')
        self.assertFalse(user['is_verified'])
        self.assertTrue(self.client.session.is_authenticated)

    def test_register_password_mismatch_stays_local(self):
        with self.assertRaises(RequestValidationError) as ctx:
            self.auth.register(dict(NEW_USER, password_confirm='other'))
        self.assertEqual(str(ctx.exception), 'Passwords do not match')
        self.assertEqual(self.backend.requests, [])

    def test_register_duplicate_username(self):
        with self.assertRaises(RequestValidationError) as ctx:
            self.auth.register(dict(NEW_USER, username='farmer'))
        self.assertEqual(str(ctx.exception), 'A user with that username already exists.')

    def test_logout(self):
        self.auth.login('farmer', MOCK_PASSWORD)
        refresh = self.client.session.refresh_token
        self.auth.logout()
        self.assertFalse(self.client.session.is_authenticated)
        self.assertNotIn(refresh, self.backend.refresh_tokens)

    def test_logout_clears_session_when_server_fails(self):
        client, _ = fake_client(respond(500, None))
        client.session.login({'id': 1, 'username': 'farmer'}, {'access': 'a', 'refresh': 'r'})
        AuthService(client).logout()
        self.assertFalse(client.session.is_authenticated)


class ProfileTest(SimpleTestCase):
    def setUp(self):
        self.client, self.backend = mock_client()
        self.auth = AuthService(self.client)

    def test_update_profile_persists(self):
        user = self.auth.update_profile({'first_name': 'Juanito'})
        self.assertEqual(user['first_name'], 'Juanito')
        self.assertEqual(Session.load(self.client.session.store).user['first_name'], 'Juanito')
        self.assertEqual(self.auth.profile()['first_name'], 'Juanito')

    def test_change_password_checks(self):
        with self.assertRaises(RequestValidationError) as ctx:
            self.auth.change_password(MOCK_PASSWORD, 'newpass123', 'newpass124')
        self.assertEqual(str(ctx.exception), 'New passwords do not match')
        with self.assertRaises(RequestValidationError) as ctx:
            self.auth.change_password(MOCK_PASSWORD, 'short', 'short')
        self.assertEqual(str(ctx.exception), 'Password must be at least 8 characters long')

    def test_change_password(self):
        with self.assertRaises(RequestValidationError) as ctx:
            self.auth.change_password('wrong', 'newpass123', 'newpass123')
        self.assertEqual(str(ctx.exception), 'Current password is incorrect')

        self.auth.change_password(MOCK_PASSWORD, 'newpass123', 'newpass123')
        self.auth.logout()
        self.assertEqual(self.auth.login('farmer', 'newpass123')['username'], 'farmer')

    def test_notification_settings(self):
        data = self.auth.update_notification_settings({'email_alerts': False})
        self.assertEqual(data['settings'], {'email_alerts': False})

    def test_verification_request(self):
        with self.assertRaises(RequestValidationError):
            self.auth.submit_verification_request('', make_image())
        with self.assertRaises(RequestValidationError):
            self.auth.submit_verification_request('03-54-12-001', None)
        self.assertIsNone(self.auth.my_verification_request())

        record = self.auth.submit_verification_request('03-54-12-001', make_image('id.jpg'))
        self.assertEqual(record['status'], 'pending')
        self.assertEqual(self.auth.my_verification_request()['rsbsa_number'], '03-54-12-001')


class DashboardTest(SimpleTestCase):
    def test_load(self):
        client, backend = mock_client()
        dashboard = Dashboard(client).load()
        self.assertEqual(dashboard.statistics['total_detections'], 15)
        self.assertLessEqual(len(dashboard.recent), 5)

        recent_call = next(r for r in backend.requests if r.path == '/detections/')
        self.assertEqual(recent_call.params, {'my_detections': 'true', 'page_size': '5'})

    def test_breakdowns(self):
        client, _ = mock_client()
        dashboard = Dashboard(client).load()
        self.assertEqual(dashboard.severity_breakdown(), [
            ('low', 4, 26.7), ('medium', 6, 40.0), ('high', 3, 20.0), ('critical', 2, 13.3),
        ])
        self.assertEqual(dashboard.crop_breakdown(), [('rice', 8), ('corn', 7)])

    def test_failure_sets_error(self):
        client, _ = fake_client(respond(500, None), respond(500, None))
        dashboard = Dashboard(client)
        with self.assertRaises(ServerError):
            dashboard.load()
        self.assertEqual(dashboard.error, 'Server error. Please try again later.')
        self.assertEqual(dashboard.severity_breakdown(), [])


class FarmServiceTest(SimpleTestCase):
    def test_submit_request(self):
        client, backend = mock_client()
        farms = FarmService(client)
        with self.assertRaises(RequestValidationError):
            farms.submit_farm_request('', Location(15.3, 120.7))

        farms.submit_farm_request('North Field', Location(15.3, 120.7))
        self.assertEqual(backend.requests[-1].json, {
            'name': 'North Field', 'size': 5, 'crop_type': 'Rice', 'lat': 15.3, 'lng': 120.7,
        })
        self.assertEqual(len(farms.list_farms()), 2)


class LocationTest(SimpleTestCase):
    def test_resolve(self):
        self.assertEqual(Location.resolve(None), Location(15.2047, 120.5947, 'Magalang, Pampanga'))
        fix = Location.resolve({'latitude': '15.1', 'longitude': 120.6})
        self.assertEqual((fix.latitude, fix.address), (15.1, ''))

    def test_inference_form(self):
        form = inference_form({'pest_name': 'Rice Bug', 'confidence': 0.5, 'symptoms': None, 'prevention': ['a']})
        self.assertEqual(form, {'pest_name': 'Rice Bug', 'confidence': '0.5', 'prevention': '["a"]'})
