"""
Capture, preview and confirm flow for a pest photo.

Nothing is written to the server until the farmer has seen the inference
result and accepted it. A detection record can only be created from
``AWAITING_CONFIRMATION`` with the result of a successful preview of the
image that is currently selected.
"""
import logging
import threading

from rest_framework import status

from .exceptions import (
    TAKING_LONGER_MESSAGE,
    WARMING_UP_MESSAGE,
    ClientError,
    UnexpectedResponse,
    WorkflowStateError,
    flatten_errors,
)
from .services import DetectionService, Location

logger = logging.getLogger(__name__)

IDLE = 'idle'
PREVIEWING = 'previewing'
ANALYZING = 'analyzing'
AWAITING_CONFIRMATION = 'awaiting_confirmation'
SAVING = 'saving'
CONFIRMED = 'confirmed'
ERROR = 'error'

NO_PEST_MESSAGE = 'No pest detected in the image. Please try another image with clearer pest visibility.'
DETECTION_FAILED_MESSAGE = 'Detection failed. Please try again.'
SAVE_FAILED_MESSAGE = 'Failed to save detection. Please try again.'
SAVED_MESSAGE = 'Detection saved successfully'

# Names the model returns when it found nothing
PLACEHOLDER_PEST_NAMES = ('', 'unknown pest')

# Inference fields sent back with the confirmed photo
ECHOED_FIELDS = (
    'pest_name',
    'confidence',
    'severity',
    'scientific_name',
    'symptoms',
    'control_methods',
    'prevention',
)


def is_placeholder_pest(name):
    return (name or '').strip().lower() in PLACEHOLDER_PEST_NAMES


def server_message(failure):
    """The message and retry hint the server put in an error body, if any."""
    if isinstance(failure, UnexpectedResponse):
        return UnexpectedResponse.default_detail, True
    payload = failure.payload
    if not isinstance(payload, dict):
        return '', None
    return flatten_errors(payload), payload.get('retry')


class PendingResult:
    """An inference result bound to the image it was computed for."""

    def __init__(self, image, crop_type, location, inference):
        self.image = image
        self.crop_type = crop_type
        self.location = location
        self.inference = inference


class DetectionWorkflow:
    """
    State machine behind the Detect Pest screen.

    Network calls run without holding the lock. Each call remembers the
    generation it started in and its result is dropped if the workflow moved
    on (new image, reject, reset or close) while it was in flight.
    """

    def __init__(self, client, detections=None):
        self.detections = detections or DetectionService(client)
        self.state = IDLE
        self.image = None
        self.pending = None
        self.result = None
        self.error = None
        self.message = None
        self.can_retry = False
        self.closed = False
        self._generation = 0
        self._lock = threading.RLock()

    # ==================== STATE HELPERS ====================
    def _require(self, *states):
        if self.closed:
            raise WorkflowStateError('Workflow is closed')
        if self.state not in states:
            raise WorkflowStateError(
                f"Cannot do this while {self.state}; expected one of {', '.join(states)}"
            )

    def _clear(self):
        self.pending = None
        self.result = None
        self.error = None
        self.message = None
        self.can_retry = False

    def _advance(self):
        self._generation += 1
        return self._generation

    def _is_current(self, generation):
        return not self.closed and generation == self._generation

    def _fail(self, message, can_retry):
        self.state = ERROR
        self.error = message
        self.can_retry = can_retry

    # ==================== OPERATIONS ====================
    def select_image(self, image):
        with self._lock:
            self._require(IDLE, PREVIEWING, CONFIRMED, ERROR)
            self._advance()
            self._clear()
            self.image = image
            self.state = PREVIEWING
            logger.debug("Selected image %s", image)

    def request_preview(self, crop_type, location=None):
        """
        Send the selected image for inference.

        Returns the pending inference payload when a pest was found, ``None``
        when the workflow ended in ``ERROR`` or the result arrived too late.
        """
        with self._lock:
            self._require(PREVIEWING)
            generation = self._advance()
            image = self.image
            location = Location.resolve(location)
            self.state = ANALYZING

        try:
            inference = self.detections.preview(image, crop_type, location)
            failure = None
        except ClientError as e:
            inference = None
            failure = e

        with self._lock:
            if not self._is_current(generation):
                logger.info("Ignoring preview result for a discarded image")
                return None

            if failure is not None:
                logger.warning("Preview failed: %s", failure)
                if failure.status_code == status.HTTP_400_BAD_REQUEST:
                    self._fail(str(failure), failure.retry)
                elif failure.status_code == status.HTTP_503_SERVICE_UNAVAILABLE:
                    self._fail(WARMING_UP_MESSAGE, True)
                elif failure.status_code == status.HTTP_504_GATEWAY_TIMEOUT:
                    self._fail(TAKING_LONGER_MESSAGE, True)
                else:
                    message, retry = server_message(failure)
                    self._fail(message or DETECTION_FAILED_MESSAGE, True if retry is None else retry)
                return None

            if not inference.get('pest_name') and inference.get('pest'):
                inference['pest_name'] = inference['pest']
            if is_placeholder_pest(inference.get('pest_name')):
                logger.info("No pest detected in preview")
                self._fail(NO_PEST_MESSAGE, True)
                return None

            self.pending = PendingResult(image, crop_type, location, inference)
            self.state = AWAITING_CONFIRMATION
            logger.info(
                "Preview: %s (%.2f confidence)", inference['pest_name'], inference['confidence'],
            )
            return inference

    def confirm(self):
        """Save the previewed detection. Returns the merged result or ``None``."""
        with self._lock:
            self._require(AWAITING_CONFIRMATION)
            pending = self.pending
            if pending is None or pending.image is not self.image:
                raise WorkflowStateError('No previewed result for the selected image')
            generation = self._advance()
            self.error = None
            self.state = SAVING

        echoed = {key: pending.inference.get(key) for key in ECHOED_FIELDS}
        try:
            status_code, record = self.detections.create(
                pending.image, pending.crop_type, pending.location, echoed,
            )
            failure = None
        except ClientError as e:
            status_code, record = None, None
            failure = e

        with self._lock:
            if not self._is_current(generation):
                logger.info("Ignoring save result for a discarded detection")
                return None

            if failure is None and status_code != status.HTTP_201_CREATED:
                logger.warning("Unexpected status %s when saving detection", status_code)
                failure = ClientError(SAVE_FAILED_MESSAGE, status_code=status_code)

            if failure is not None:
                logger.error("Saving detection failed: %s", failure)
                self.state = AWAITING_CONFIRMATION
                self.error = server_message(failure)[0] or SAVE_FAILED_MESSAGE
                self.can_retry = False
                return None

            result = dict(pending.inference)
            result.update(record)
            self.result = result
            self.pending = None
            self.message = SAVED_MESSAGE
            self.state = CONFIRMED
            logger.info("Detection %s saved", record.get('id'))
            return result

    def reject(self):
        with self._lock:
            self._require(AWAITING_CONFIRMATION)
            self._advance()
            self._clear()
            self.image = None
            self.state = IDLE

    def reset(self):
        with self._lock:
            self._require(CONFIRMED, ERROR)
            self._advance()
            self._clear()
            self.image = None
            self.state = IDLE

    def close(self):
        with self._lock:
            self._advance()
            self.closed = True
