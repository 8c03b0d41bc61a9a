from django.test import SimpleTestCase
from django.utils import timezone

from client.session import Session

from .utils import make_store

USER = {'id': 1, 'username': 'farmer', 'role': 'farmer'}
TOKENS = {'access': 'access-1', 'refresh': 'refresh-1'}


class SessionTest(SimpleTestCase):
    def setUp(self):
        self.store = make_store()
        self.session = Session.load(self.store)

    def test_starts_logged_out(self):
        self.assertFalse(self.session.is_authenticated)
        self.assertIsNone(self.session.role)
        self.assertFalse(self.session.login_required)

    def test_login_survives_reload(self):
        user = dict(USER, date_joined=timezone.now())
        self.session.login(user, TOKENS)

        restored = Session.load(self.store)
        self.assertTrue(restored.is_authenticated)
        self.assertEqual(restored.user['username'], 'farmer')
        self.assertEqual(restored.access_token, 'access-1')
        self.assertEqual(restored.refresh_token, 'refresh-1')
        self.assertIsInstance(restored.user['date_joined'], str)

    def test_corrupt_user_record_clears_auth(self):
        self.store.set('access_token', 'access-1')
        self.store.set('refresh_token', 'refresh-1')
        self.store.set('user', '{not json')

        restored = Session.load(self.store)
        self.assertFalse(restored.is_authenticated)
        self.assertIsNone(self.store.get('access_token'))
        self.assertIsNone(self.store.get('refresh_token'))

    def test_user_record_must_be_an_object(self):
        self.store.set('access_token', 'access-1')
        self.store.set('user', '[1, 2]')
        self.assertFalse(Session.load(self.store).is_authenticated)

    def test_token_without_user_is_not_authenticated(self):
        self.store.set('access_token', 'access-1')
        self.assertFalse(Session.load(self.store).is_authenticated)

    def test_roles(self):
        self.session.login(dict(USER, role='super_admin'), TOKENS)
        self.assertEqual(self.session.role, 'super_admin')
        self.assertTrue(self.session.is_admin)

        self.session.update_user(USER)
        self.assertFalse(self.session.is_admin)

    def test_expire_requires_login(self):
        self.session.login(USER, TOKENS)
        self.session.expire()
        self.assertTrue(self.session.login_required)
        self.assertFalse(self.session.is_authenticated)
        self.assertIsNone(self.store.get('user'))

        self.session.login(USER, TOKENS)
        self.assertFalse(self.session.login_required)

    def test_refreshed_token_is_stored(self):
        self.session.login(USER, TOKENS)
        self.session.update_access_token('access-2')
        self.assertEqual(Session.load(self.store).access_token, 'access-2')


class DismissedAlertsTest(SimpleTestCase):
    def setUp(self):
        self.store = make_store()
        self.session = Session.load(self.store)

    def test_dismissals_persist(self):
        self.session.dismiss_alert(3)
        self.session.dismiss_alert(3)
        self.session.dismiss_alert(7)

        restored = Session.load(self.store)
        self.assertEqual(restored.dismissed_alert_ids, [3, 7])
        self.assertTrue(restored.is_alert_dismissed(7))
        self.assertFalse(restored.is_alert_dismissed(8))

    def test_logout_keeps_dismissals(self):
        self.session.login(USER, TOKENS)
        self.session.dismiss_alert(1)
        self.session.logout()
        self.assertTrue(Session.load(self.store).is_alert_dismissed(1))

    def test_unreadable_list_is_discarded(self):
        self.store.set('dismissedAlerts', 'oops')
        self.assertEqual(Session.load(self.store).dismissed_alert_ids, [])
