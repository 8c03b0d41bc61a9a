from django.test import SimpleTestCase

from client.exceptions import RequestValidationError, WorkflowStateError
from client.reports import (
    HeatMap,
    InfestationReport,
    farm_heat_radius,
    farm_status,
    map_severity_to_backend,
)
from client.services import Location

from .utils import fake_client, mock_client, respond


class SeverityTest(SimpleTestCase):
    def test_scale(self):
        mapped = [map_severity_to_backend(level) for level in range(6)]
        self.assertEqual(mapped, ['low', 'low', 'low', 'medium', 'high', 'critical'])

    def test_out_of_range(self):
        for level in (-1, 6, '3', 2.5, True, None):
            with self.assertRaises(ValueError):
                map_severity_to_backend(level)


class FarmStatusTest(SimpleTestCase):
    def test_thresholds(self):
        self.assertIsNone(farm_status(0))
        self.assertIsNone(farm_status(2))
        self.assertEqual(farm_status(3)['level'], 'low')
        self.assertEqual(farm_status(5)['level'], 'moderate')
        self.assertEqual(farm_status(7)['level'], 'high')
        self.assertEqual(farm_status(10)['text'], 'Critical - High Infestation')
        self.assertEqual(farm_status(40)['level'], 'critical')

    def test_radius(self):
        self.assertEqual(farm_heat_radius(None), 56)
        self.assertEqual(farm_heat_radius('bad'), 56)
        self.assertEqual(farm_heat_radius(2), 112)
        self.assertEqual(farm_heat_radius(0.5), 50)
        self.assertEqual(farm_heat_radius(20), 500)


class HeatMapTest(SimpleTestCase):
    def setUp(self):
        self.client, self.backend = mock_client()
        self.heat_map = HeatMap(self.client).load()

    def test_load(self):
        self.assertEqual({p['id'] for p in self.heat_map.points}, {1, 2})
        self.assertEqual(len(self.heat_map.farms), 2)
        self.assertEqual(len(self.heat_map.farm_infestations(1)), 1)
        self.assertIsNone(self.heat_map.farm_status(1))
        self.assertEqual(self.heat_map.farm_radius(1), 280)

    def test_set_days_only_refetches_points(self):
        sent = len(self.backend.requests)
        self.heat_map.set_days(7)
        new = self.backend.requests[sent:]
        self.assertEqual([r.path for r in new], ['/detections/heatmap_data/'])
        self.assertEqual(new[0].params, {'days': '7'})

    def test_resolve(self):
        self.assertTrue(self.heat_map.resolve(1))
        self.assertNotIn(1, [p['id'] for p in self.heat_map.points])
        detection = self.backend._find('detections', 1)
        self.assertEqual(detection['status'], 'resolved')
        self.assertFalse(detection['active'])

        self.heat_map.load()
        self.assertNotIn(1, [p['id'] for p in self.heat_map.points])

    def test_request_farm_does_not_add_farm(self):
        record = self.heat_map.request_farm('North Field', Location(15.3, 120.7))
        self.assertEqual(record['status'], 'pending')
        self.assertEqual(record['size'], 5)
        self.assertEqual(record['crop_type'], 'Rice')
        self.heat_map.load()
        self.assertEqual(len(self.heat_map.farms), 2)


class UnsyncedResolveTest(SimpleTestCase):
    def test_point_removed_when_server_rejects(self):
        client, transport = fake_client(respond(500, None), respond(405, {'detail': 'Not allowed'}))
        heat_map = HeatMap(client)
        heat_map.points = [{'id': 4, 'active': True}, {'id': 5, 'active': True}]

        self.assertFalse(heat_map.resolve(4))
        self.assertEqual([p['id'] for p in heat_map.points], [5])
        self.assertEqual([c['method'] for c in transport.calls], ['PATCH', 'PUT'])


class InfestationReportTest(SimpleTestCase):
    def setUp(self):
        self.client, self.backend = mock_client()
        self.heat_map = HeatMap(self.client).load()
        self.report = self.heat_map.report()

    def test_full_flow(self):
        self.report.choose_farm(2)
        self.report.describe_pest('Fall Armyworm', 'Leaves eaten')
        self.report.rate_severity(4)

        payload = self.report.payload()
        self.assertEqual(payload['severity'], 'high')
        self.assertEqual(payload['crop_type'], 'corn')
        self.assertEqual(payload['farm_id'], 2)
        self.assertTrue(payload['active'])

        point = self.report.submit()
        self.assertEqual(self.report.step, 'submitted')
        self.assertEqual(point['pest'], 'Fall Armyworm')
        self.assertEqual(point['severity'], 'high')
        self.assertEqual(point['farm_id'], 2)
        self.assertIn(point, self.heat_map.points)
        self.assertEqual(len(self.heat_map.farm_infestations(2)), 2)

    def test_unknown_farm(self):
        with self.assertRaises(RequestValidationError) as ctx:
            self.report.choose_farm(99)
        self.assertEqual(str(ctx.exception), 'Selected farm not found')

    def test_pest_required(self):
        self.report.choose_farm(1)
        with self.assertRaises(RequestValidationError):
            self.report.describe_pest('   ')

    def test_steps_in_order(self):
        with self.assertRaises(WorkflowStateError):
            self.report.rate_severity(3)
        with self.assertRaises(WorkflowStateError):
            self.report.back()
        self.report.choose_farm(1)
        self.report.back()
        self.assertEqual(self.report.step, 'farm')

    def test_crop_from_pest_when_farm_has_none(self):
        heat_map = HeatMap(fake_client()[0])
        heat_map.farms = [{'id': 7, 'name': 'Plot', 'lat': 15.0, 'lng': 120.0, 'crop_type': None}]
        report = InfestationReport(heat_map)
        report.choose_farm('7')
        report.describe_pest('Asian Corn Borer')
        self.assertEqual(report.crop_type, 'corn')
