"""
Background-refreshed widgets: the alert banner and the notification bell.

Each widget owns one APScheduler interval job. The first poll runs as soon
as the job is added; after ``stop()`` no poll, including one already in
flight, touches the widget's state.
"""
import datetime
import logging
import threading

from apscheduler.jobstores.base import JobLookupError
from django.conf import settings
from django.utils import timezone
from django.utils.dateparse import parse_datetime

from .exceptions import ClientError
from .serializers import (
    AlertSerializer,
    NotificationSerializer,
    UnreadCountSerializer,
    decode_list,
    decode_object,
)

logger = logging.getLogger(__name__)

ALERT_ENVELOPES = ('alerts', 'results', 'data')
MAX_BADGE_COUNT = 99


class Poller:
    """
    Runs ``fetch`` every ``interval`` seconds and hands the result to
    ``apply`` unless the poller was stopped in the meantime.
    """

    def __init__(self, name, fetch, apply, interval):
        self.name = name
        self.fetch = fetch
        self.apply = apply
        self.interval = interval
        self.job = None
        self._stopped = True
        self._lock = threading.Lock()

    @property
    def running(self):
        return not self._stopped

    def start(self, scheduler):
        with self._lock:
            if self.job is not None:
                return self.job
            self._stopped = False
            self.job = scheduler.add_job(
                func=self.run,
                trigger='interval',
                seconds=self.interval,
                id=f'{self.name}-{id(self)}',
                name=self.name,
                replace_existing=True,
                next_run_time=datetime.datetime.now(datetime.timezone.utc),
            )
        logger.info("Started %s poller every %ss", self.name, self.interval)
        return self.job

    def stop(self):
        with self._lock:
            self._stopped = True
            job, self.job = self.job, None
        if job is not None:
            try:
                job.remove()
            except JobLookupError:
                logger.debug("%s poller job already removed", self.name)
            logger.info("Stopped %s poller", self.name)

    def run(self):
        if self._stopped:
            return False
        result = self.fetch()
        with self._lock:
            if self._stopped:
                logger.debug("Dropping %s poll that finished after stop", self.name)
                return False
            self.apply(result)
        return True


# ==================== ALERTS ====================
class AlertFeed:
    """Active admin alerts for the current farmer, minus the dismissed ones."""

    def __init__(self, client, session=None, interval=None):
        self.client = client
        self.session = session or client.session
        self.alerts = []
        self.poller = Poller(
            'alerts', self.fetch, self._set_alerts,
            interval or settings.ALERT_POLL_INTERVAL,
        )

    def fetch(self):
        try:
            response = self.client.get('/alerts/my_alerts/')
            return decode_list(response.data, AlertSerializer, ALERT_ENVELOPES)
        except ClientError as e:
            # The banner is optional: a failed poll just shows no alerts
            logger.error("Failed to fetch alerts: %s", e)
            return []

    def _set_alerts(self, alerts):
        self.alerts = alerts

    def refresh(self):
        self._set_alerts(self.fetch())
        return self.visible_alerts

    @property
    def visible_alerts(self):
        return [alert for alert in self.alerts if not self.session.is_alert_dismissed(alert['id'])]

    def dismiss(self, alert_id):
        """Hide an alert on this device. The server is not told."""
        self.session.dismiss_alert(alert_id)

    def start(self, scheduler):
        return self.poller.start(scheduler)

    def stop(self):
        self.poller.stop()


# ==================== NOTIFICATIONS ====================
class NotificationFeed:
    def __init__(self, client, interval=None):
        self.client = client
        self.notifications = []
        self.unread_count = 0
        self.marked_read = set()
        self._lock = threading.RLock()
        self.poller = Poller(
            'notifications', self.fetch_unread_count, self._set_unread_count,
            interval or settings.NOTIFICATION_POLL_INTERVAL,
        )

    def fetch_unread_count(self):
        try:
            response = self.client.get('/notifications/unread_count/')
            return decode_object(response.data, UnreadCountSerializer)['unread_count']
        except ClientError as e:
            logger.error("Error fetching unread count: %s", e)
            return None

    def _set_unread_count(self, count):
        if count is None:
            return
        with self._lock:
            self.unread_count = count

    def refresh(self):
        """Load the notification list shown in the dropdown."""
        response = self.client.get('/notifications/')
        notifications = decode_list(response.data, NotificationSerializer)
        data = response.data
        if isinstance(data, dict) and data.get('unread_count') is not None:
            unread = decode_object(data, UnreadCountSerializer)['unread_count']
        else:
            unread = sum(1 for n in notifications if not n['is_read'])
        with self._lock:
            self.notifications = notifications
            self.unread_count = unread
        return notifications

    def _find(self, notification_id):
        for notification in self.notifications:
            if notification['id'] == notification_id:
                return notification
        return None

    def mark_read(self, notification_id):
        with self._lock:
            if notification_id in self.marked_read:
                return False
            notification = self._find(notification_id)
            if notification is not None and notification['is_read']:
                return False

        self.client.post(f'/notifications/{notification_id}/mark_read/')

        with self._lock:
            if notification_id in self.marked_read:
                return False
            self.marked_read.add(notification_id)
            notification = self._find(notification_id)
            if notification is not None:
                if notification['is_read']:
                    return False
                notification['is_read'] = True
            self.unread_count = max(0, self.unread_count - 1)
        return True

    def mark_all_read(self):
        self.client.post('/notifications/mark_all_read/')
        with self._lock:
            for notification in self.notifications:
                notification['is_read'] = True
            self.unread_count = 0

    @property
    def badge(self):
        if self.unread_count <= 0:
            return None
        if self.unread_count > MAX_BADGE_COUNT:
            return f'{MAX_BADGE_COUNT}+'
        return str(self.unread_count)

    def start(self, scheduler):
        return self.poller.start(scheduler)

    def stop(self):
        self.poller.stop()


def time_ago(timestamp, now=None):
    """Short relative age for a notification timestamp."""
    if isinstance(timestamp, str):
        timestamp = parse_datetime(timestamp)
    if timestamp is None:
        return ''
    if timezone.is_naive(timestamp):
        timestamp = timezone.make_aware(timestamp)
    now = now or timezone.now()

    seconds = int((now - timestamp).total_seconds())
    if seconds < 60:
        return 'Just now'
    minutes = seconds // 60
    if minutes < 60:
        return f'{minutes}m ago'
    hours = minutes // 60
    if hours < 24:
        return f'{hours}h ago'
    days = hours // 24
    if days < 7:
        return f'{days}d ago'
    local = timezone.localtime(timestamp)
    return f'{local:%b} {local.day}, {local.year}'
