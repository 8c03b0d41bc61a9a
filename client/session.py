import json
import logging
import threading

from django.core.cache import caches
from django.core.serializers.json import DjangoJSONEncoder

from .permissions import ADMIN_ROLES

logger = logging.getLogger(__name__)

ACCESS_TOKEN_KEY = 'access_token'
REFRESH_TOKEN_KEY = 'refresh_token'
USER_KEY = 'user'
DISMISSED_ALERTS_KEY = 'dismissedAlerts'


class LocalStore:
    """Persistent key/value storage on top of a Django cache backend."""

    def __init__(self, cache=None):
        self.cache = cache if cache is not None else caches['default']

    def get(self, key, default=None):
        return self.cache.get(key, default)

    def set(self, key, value):
        self.cache.set(key, value, timeout=None)

    def delete(self, key):
        self.cache.delete(key)


class Session:
    """
    Auth and per-device state shared by every service.

    Values are read from the store once (``load``) and every change is
    written straight back, so a new ``Session`` over the same store sees the
    previous session's token, user and dismissed alerts.
    """

    def __init__(self, store=None):
        self.store = store if store is not None else LocalStore()
        self.access_token = None
        self.refresh_token = None
        self.user = None
        self.login_required = False
        self._dismissed_alert_ids = []
        self._lock = threading.RLock()

    @classmethod
    def load(cls, store=None):
        session = cls(store)
        session.reload()
        return session

    def reload(self):
        with self._lock:
            access = self.store.get(ACCESS_TOKEN_KEY)
            raw_user = self.store.get(USER_KEY)
            if access and raw_user:
                try:
                    user = json.loads(raw_user)
                    if not isinstance(user, dict):
                        raise ValueError('user record is not an object')
                except (TypeError, ValueError) as e:
                    logger.error("Error parsing stored user data: %s", e)
                    self._clear_auth()
                else:
                    self.access_token = access
                    self.refresh_token = self.store.get(REFRESH_TOKEN_KEY)
                    self.user = user

            try:
                dismissed = json.loads(self.store.get(DISMISSED_ALERTS_KEY) or '[]')
            except (TypeError, ValueError):
                logger.warning("Discarding unreadable dismissed alert list")
                dismissed = []
            self._dismissed_alert_ids = list(dismissed) if isinstance(dismissed, list) else []

    # ==================== AUTH ====================
    @property
    def is_authenticated(self):
        return bool(self.access_token and self.user)

    @property
    def role(self):
        return (self.user or {}).get('role')

    @property
    def is_admin(self):
        return self.role in ADMIN_ROLES

    def login(self, user, tokens):
        with self._lock:
            self.user = dict(user)
            self.access_token = tokens['access']
            self.refresh_token = tokens.get('refresh')
            self.login_required = False
            self.store.set(ACCESS_TOKEN_KEY, self.access_token)
            if self.refresh_token:
                self.store.set(REFRESH_TOKEN_KEY, self.refresh_token)
            self.store.set(USER_KEY, json.dumps(self.user, cls=DjangoJSONEncoder))

    def update_user(self, user):
        with self._lock:
            self.user = dict(user)
            self.store.set(USER_KEY, json.dumps(self.user, cls=DjangoJSONEncoder))

    def update_access_token(self, access):
        with self._lock:
            self.access_token = access
            self.store.set(ACCESS_TOKEN_KEY, access)

    def logout(self):
        with self._lock:
            self._clear_auth()

    def expire(self):
        """Drop credentials after a failed refresh; the UI must send the user to login."""
        with self._lock:
            self._clear_auth()
            self.login_required = True

    def _clear_auth(self):
        self.access_token = None
        self.refresh_token = None
        self.user = None
        for key in (ACCESS_TOKEN_KEY, REFRESH_TOKEN_KEY, USER_KEY):
            self.store.delete(key)

    # ==================== DISMISSED ALERTS ====================
    @property
    def dismissed_alert_ids(self):
        return list(self._dismissed_alert_ids)

    def is_alert_dismissed(self, alert_id):
        return alert_id in self._dismissed_alert_ids

    def dismiss_alert(self, alert_id):
        with self._lock:
            if alert_id not in self._dismissed_alert_ids:
                self._dismissed_alert_ids.append(alert_id)
                self.store.set(DISMISSED_ALERTS_KEY, json.dumps(self._dismissed_alert_ids))
