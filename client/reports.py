"""
Heat map of active infestations and the manual infestation report flow.
"""
import logging

from django.utils import timezone

from .exceptions import ClientError, RequestValidationError, WorkflowStateError
from .pest_library import get_crop_from_pest
from .services import DetectionService, FarmService

logger = logging.getLogger(__name__)

# Farmer-facing 0-5 damage scale to the API's severity enum
SEVERITY_LEVELS = {
    0: 'low',
    1: 'low',
    2: 'low',
    3: 'medium',
    4: 'high',
    5: 'critical',
}

# Active infestations on one farm before a status is shown
MINIMUM_THRESHOLD = 3
MODERATE_THRESHOLD = 5
HIGH_THRESHOLD = 7
CRITICAL_THRESHOLD = 10

# 1 ha is a 100 m square; a circle of the same area has a radius of about 56 m
METERS_PER_HECTARE = 56
MIN_FARM_RADIUS = 50
MAX_FARM_RADIUS = 500

DAY_RANGES = [7, 30, 90, 365]


def map_severity_to_backend(level):
    """Collapse the 0-5 damage scale into low/medium/high/critical."""
    if isinstance(level, bool) or level not in SEVERITY_LEVELS:
        raise ValueError(f'Severity level must be an integer from 0 to 5, got {level!r}')
    return SEVERITY_LEVELS[level]


def farm_status(active_count):
    """
    Risk label for a farm from its number of active infestations.

    Returns ``None`` below the minimum threshold, otherwise a dict with
    ``level`` and the display ``text``.
    """
    if active_count < MINIMUM_THRESHOLD:
        return None
    if active_count >= CRITICAL_THRESHOLD:
        return {'level': 'critical', 'text': 'Critical - High Infestation'}
    if active_count >= HIGH_THRESHOLD:
        return {'level': 'high', 'text': 'High Risk - Monitor Closely'}
    if active_count >= MODERATE_THRESHOLD:
        return {'level': 'moderate', 'text': 'Moderate Risk - Action Needed'}
    return {'level': 'low', 'text': 'Low Risk - Early Detection'}


def farm_heat_radius(size):
    """Map circle radius in meters for a farm of ``size`` hectares."""
    try:
        hectares = float(size) if size else 1.0
    except (TypeError, ValueError):
        hectares = 1.0
    return min(max(hectares * METERS_PER_HECTARE, MIN_FARM_RADIUS), MAX_FARM_RADIUS)


class HeatMap:
    def __init__(self, client, days=30):
        self.detections = DetectionService(client)
        self.farm_service = FarmService(client)
        self.days = days
        self.points = []
        self.farms = []

    def load(self, days=None):
        if days is not None:
            self.days = days
        self.points = self.detections.heatmap(self.days)
        self.farms = self.farm_service.list_farms()
        logger.info("Heat map loaded: %d points, %d farms", len(self.points), len(self.farms))
        return self

    def set_days(self, days):
        """Change the time window; only the points are refetched."""
        self.days = days
        self.points = self.detections.heatmap(days)
        return self.points

    @property
    def active_detections(self):
        return [point for point in self.points if point.get('active') is not False]

    def farm(self, farm_id):
        for farm in self.farms:
            if farm['id'] == farm_id:
                return farm
        return None

    def farm_infestations(self, farm_id):
        return [point for point in self.active_detections if point.get('farm_id') == farm_id]

    def farm_status(self, farm_id):
        return farm_status(len(self.farm_infestations(farm_id)))

    def farm_radius(self, farm_id):
        farm = self.farm(farm_id)
        return farm_heat_radius(farm.get('size') if farm else None)

    def add_point(self, point):
        self.points.append(point)

    def resolve(self, detection_id):
        """
        Mark an infestation resolved and drop it from the map.

        The point is removed locally even when the server rejects both the
        PATCH and the PUT. Returns whether the server accepted the change.
        """
        try:
            self.detections.resolve(detection_id)
            synced = True
        except ClientError as e:
            logger.error("Failed to resolve infestation %s on the server: %s", detection_id, e)
            synced = False
        self.points = [point for point in self.points if point['id'] != detection_id]
        return synced

    def request_farm(self, name, location, size=None, crop_type=None):
        return self.farm_service.submit_farm_request(name, location, size=size, crop_type=crop_type)

    def report(self):
        return InfestationReport(self)


# ==================== INFESTATION REPORT ====================
FARM_STEP = 'farm'
PEST_STEP = 'pest'
SEVERITY_STEP = 'severity'
REVIEW_STEP = 'review'
SUBMITTED = 'submitted'

STEPS = [FARM_STEP, PEST_STEP, SEVERITY_STEP, REVIEW_STEP]


class InfestationReport:
    """Step-by-step manual report of an infestation on one of the user's farms."""

    def __init__(self, heat_map):
        self.heat_map = heat_map
        self.step = FARM_STEP
        self.farm = None
        self.pest_type = ''
        self.description = ''
        self.severity_level = None
        self.severity = None
        self.point = None

    def _require(self, step):
        if self.step != step:
            raise WorkflowStateError(f'Report is at the {self.step} step, not {step}')

    def choose_farm(self, farm_id):
        self._require(FARM_STEP)
        farm = self.heat_map.farm(int(farm_id))
        if farm is None:
            raise RequestValidationError('Selected farm not found', retry=False)
        self.farm = farm
        self.step = PEST_STEP

    def describe_pest(self, pest_type, description=''):
        self._require(PEST_STEP)
        if not pest_type or not pest_type.strip():
            raise RequestValidationError('Please select a farm and enter pest type', retry=False)
        self.pest_type = pest_type.strip()
        self.description = description or ''
        self.step = SEVERITY_STEP

    def rate_severity(self, level):
        self._require(SEVERITY_STEP)
        self.severity = map_severity_to_backend(level)
        self.severity_level = level
        self.step = REVIEW_STEP

    def back(self):
        if self.step not in STEPS[1:]:
            raise WorkflowStateError(f'Cannot go back from the {self.step} step')
        self.step = STEPS[STEPS.index(self.step) - 1]

    @property
    def crop_type(self):
        if self.farm and self.farm.get('crop_type'):
            return self.farm['crop_type'].lower()
        return get_crop_from_pest(self.pest_type)

    def payload(self):
        return {
            'pest_type': self.pest_type,
            'severity': self.severity,
            'description': self.description,
            'latitude': self.farm['lat'],
            'longitude': self.farm['lng'],
            'farm_id': self.farm['id'],
            'crop_type': self.crop_type,
            'active': True,
        }

    def submit(self):
        """Send the report; returns the point added to the heat map."""
        self._require(REVIEW_STEP)
        record = self.heat_map.detections.report(self.payload())

        point = {
            'id': record['id'],
            'pest': record.get('pest_name') or record.get('pest_type') or self.pest_type,
            'severity': record.get('severity') or self.severity,
            'lat': record.get('latitude', self.farm['lat']),
            'lng': record.get('longitude', self.farm['lng']),
            'farm_id': record.get('farm_id') or record.get('farm') or self.farm['id'],
            'reported_at': record.get('reported_at') or record.get('detected_at') or timezone.now(),
            'active': record.get('active') is not False,
            'status': record.get('status') or 'pending',
        }
        self.heat_map.add_point(point)
        self.point = point
        self.step = SUBMITTED
        logger.info("Infestation %s reported on farm %s", point['id'], self.farm['id'])
        return point
