"""
Decoders for the JSON the PestCheck API returns.

Every response body passes through one of these serializers before a
service touches it, so a renamed field or a changed envelope fails here,
loudly, instead of turning into an empty screen.
"""
from rest_framework import serializers

from .exceptions import UnexpectedResponse

SEVERITY_CHOICES = ['low', 'medium', 'high', 'critical']
DETECTION_STATUS_CHOICES = ['pending', 'verified', 'rejected', 'resolved']
REQUEST_STATUS_CHOICES = ['pending', 'approved', 'rejected']
ALERT_TYPES = ['info', 'warning', 'critical']
ROLE_CHOICES = ['farmer', 'expert', 'admin', 'super_admin']


class RecordSerializer(serializers.Serializer):
    """
    Validates the declared fields and keeps everything else verbatim.

    Records are passed between the API and the screens unchanged, so keys the
    client does not know about must survive decoding.
    """

    def to_internal_value(self, data):
        validated = super().to_internal_value(data)
        extras = {key: value for key, value in data.items() if key not in self.fields}
        extras.update(validated)
        return extras


# ==================== AUTH ====================
class UserSerializer(RecordSerializer):
    id = serializers.IntegerField()
    username = serializers.CharField()
    email = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    first_name = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    last_name = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    phone = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    role = serializers.ChoiceField(choices=ROLE_CHOICES, default='farmer')
    is_verified = serializers.BooleanField(default=False)
    date_joined = serializers.DateTimeField(required=False, allow_null=True)


class TokenPairSerializer(RecordSerializer):
    access = serializers.CharField()
    refresh = serializers.CharField()


class AccessTokenSerializer(RecordSerializer):
    access = serializers.CharField()


class AuthResponseSerializer(RecordSerializer):
    user = UserSerializer()
    tokens = TokenPairSerializer()


class VerificationRequestSerializer(RecordSerializer):
    id = serializers.IntegerField()
    status = serializers.ChoiceField(choices=REQUEST_STATUS_CHOICES)
    rsbsa_number = serializers.CharField(required=False, allow_blank=True)
    notes = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    review_notes = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    created_at = serializers.DateTimeField(required=False, allow_null=True)


# ==================== DETECTIONS ====================
class InferenceResultSerializer(RecordSerializer):
    """Payload of the non-persisting preview call."""
    pest_name = serializers.CharField(allow_blank=True, allow_null=True, default='')
    confidence = serializers.FloatField(min_value=0.0, max_value=1.0, default=0.0)
    severity = serializers.ChoiceField(choices=SEVERITY_CHOICES, required=False, allow_null=True)
    scientific_name = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    control_methods = serializers.ListField(child=serializers.CharField(), required=False, allow_null=True)
    prevention = serializers.ListField(child=serializers.CharField(), required=False, allow_null=True)
    symptoms = serializers.CharField(required=False, allow_blank=True, allow_null=True)


class DetectionSerializer(RecordSerializer):
    id = serializers.IntegerField()
    pest_name = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    crop_type = serializers.CharField(required=False, allow_blank=True)
    severity = serializers.ChoiceField(choices=SEVERITY_CHOICES)
    confidence = serializers.FloatField(min_value=0.0, max_value=1.0, default=0.0)
    latitude = serializers.FloatField()
    longitude = serializers.FloatField()
    detected_at = serializers.DateTimeField(required=False, allow_null=True)
    status = serializers.ChoiceField(choices=DETECTION_STATUS_CHOICES, default='pending')
    active = serializers.BooleanField(default=True)
    farm_id = serializers.IntegerField(required=False, allow_null=True)
    user_name = serializers.CharField(required=False, allow_blank=True)
    farm_name = serializers.CharField(required=False, allow_blank=True, allow_null=True)


class HeatmapPointSerializer(RecordSerializer):
    id = serializers.IntegerField()
    pest = serializers.CharField(allow_blank=True, allow_null=True)
    severity = serializers.ChoiceField(choices=SEVERITY_CHOICES)
    lat = serializers.FloatField()
    lng = serializers.FloatField()
    farm_id = serializers.IntegerField(allow_null=True, required=False)
    reported_at = serializers.DateTimeField(required=False, allow_null=True)
    active = serializers.BooleanField(default=True)
    status = serializers.ChoiceField(choices=DETECTION_STATUS_CHOICES, default='pending')


class PestCountSerializer(serializers.Serializer):
    pest_name = serializers.CharField(allow_blank=True)
    count = serializers.IntegerField(min_value=0)


class DetectionStatisticsSerializer(RecordSerializer):
    total_detections = serializers.IntegerField(min_value=0)
    by_severity = serializers.DictField(child=serializers.IntegerField(min_value=0))
    by_crop = serializers.DictField(child=serializers.IntegerField(min_value=0), required=False)
    by_pest = PestCountSerializer(many=True, required=False)


# ==================== FARMS ====================
class FarmSerializer(RecordSerializer):
    id = serializers.IntegerField()
    name = serializers.CharField()
    lat = serializers.FloatField()
    lng = serializers.FloatField()
    size = serializers.FloatField(required=False, allow_null=True)
    crop_type = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    is_verified = serializers.BooleanField(default=False)
    user_name = serializers.CharField(required=False, allow_blank=True)
    created_at = serializers.DateTimeField(required=False, allow_null=True)


class FarmRequestSerializer(RecordSerializer):
    id = serializers.IntegerField()
    name = serializers.CharField()
    lat = serializers.FloatField()
    lng = serializers.FloatField()
    size = serializers.FloatField(required=False, allow_null=True)
    crop_type = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    status = serializers.ChoiceField(choices=REQUEST_STATUS_CHOICES, default='pending')
    review_notes = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    user_name = serializers.CharField(required=False, allow_blank=True)
    created_at = serializers.DateTimeField(required=False, allow_null=True)


# ==================== ALERTS & NOTIFICATIONS ====================
class AlertSerializer(RecordSerializer):
    id = serializers.IntegerField()
    title = serializers.CharField()
    message = serializers.CharField(allow_blank=True)
    alert_type = serializers.ChoiceField(choices=ALERT_TYPES, default='info')
    target_area = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    is_active = serializers.BooleanField(default=True)
    created_at = serializers.DateTimeField(required=False, allow_null=True)
    expires_at = serializers.DateTimeField(required=False, allow_null=True)


class NotificationSerializer(RecordSerializer):
    id = serializers.IntegerField()
    notification_type = serializers.CharField(required=False, allow_blank=True)
    title = serializers.CharField(allow_blank=True)
    message = serializers.CharField(allow_blank=True)
    is_read = serializers.BooleanField(default=False)
    created_at = serializers.DateTimeField(required=False, allow_null=True)


class UnreadCountSerializer(RecordSerializer):
    unread_count = serializers.IntegerField(min_value=0, default=0)


# ==================== REFERENCE & ADMIN ====================
class PestInfoSerializer(RecordSerializer):
    id = serializers.IntegerField()
    name = serializers.CharField()
    scientific_name = serializers.CharField(allow_blank=True)
    crop_affected = serializers.CharField(allow_blank=True)
    description = serializers.CharField(required=False, allow_blank=True)
    symptoms = serializers.CharField(required=False, allow_blank=True)
    control_methods = serializers.CharField(required=False, allow_blank=True)
    prevention = serializers.CharField(required=False, allow_blank=True)
    image_url = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    is_published = serializers.BooleanField(default=True)


class UserActivitySerializer(RecordSerializer):
    id = serializers.IntegerField()
    user = serializers.IntegerField(allow_null=True)
    user_name = serializers.CharField(allow_blank=True)
    user_role = serializers.CharField(required=False, allow_blank=True)
    action = serializers.CharField()
    details = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    ip_address = serializers.CharField(required=False, allow_blank=True, allow_null=True)
    timestamp = serializers.DateTimeField()


class DatabaseTableSerializer(RecordSerializer):
    name = serializers.CharField()
    count = serializers.IntegerField(required=False, min_value=0)


class TableDataSerializer(RecordSerializer):
    columns = serializers.ListField(child=serializers.CharField(), required=False)
    data = serializers.ListField(child=serializers.DictField())
    total_count = serializers.IntegerField(required=False, min_value=0)
    total_pages = serializers.IntegerField(required=False, min_value=0)
    page = serializers.IntegerField(required=False, min_value=1)


class QueryResultSerializer(RecordSerializer):
    columns = serializers.ListField(child=serializers.CharField(), required=False)
    data = serializers.ListField(child=serializers.DictField())
    count = serializers.IntegerField(required=False, min_value=0)


# ==================== DECODING ====================
def _describe(errors):
    return '; '.join(f"{field}: {' '.join(str(m) for m in messages)}"
                     if isinstance(messages, list) else f"{field}: {messages}"
                     for field, messages in errors.items())


def decode_object(data, serializer_class):
    if not isinstance(data, dict):
        raise UnexpectedResponse(
            payload=data,
            detail=f'Expected a JSON object for {serializer_class.__name__}, got {type(data).__name__}',
        )
    serializer = serializer_class(data=data)
    if not serializer.is_valid():
        raise UnexpectedResponse(
            payload=data,
            detail=f'Invalid {serializer_class.__name__} payload ({_describe(serializer.errors)})',
        )
    return dict(serializer.validated_data)


def unwrap_list(data, envelope_keys=('results',)):
    """Return the list inside a list response: a bare array or a paginated object."""
    if isinstance(data, list):
        return data
    if isinstance(data, dict):
        for key in envelope_keys:
            if isinstance(data.get(key), list):
                return data[key]
    raise UnexpectedResponse(
        payload=data,
        detail=f'Expected a list response, got {type(data).__name__}',
    )


def decode_list(data, serializer_class, envelope_keys=('results',)):
    items = unwrap_list(data, envelope_keys)
    decoded = []
    for index, item in enumerate(items):
        try:
            decoded.append(decode_object(item, serializer_class))
        except UnexpectedResponse as e:
            raise UnexpectedResponse(payload=data, detail=f'Item {index}: {e.detail}')
    return decoded
