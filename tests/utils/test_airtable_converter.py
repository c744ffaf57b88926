import unittest
from datetime import datetime, timezone

from flowsync.models.flow import Flow, FlowStatus
from flowsync.models.metrics import Metric
from flowsync.models.sync import FailedFlowRecord
from flowsync.utils.airtable_converter import (
    count_growth, metrics_for_flow, flow_to_airtable_record, failed_flow_to_airtable_record, status_column
)


class TestCountGrowth(unittest.TestCase):

    def test_no_previous_data_is_zero(self):
        self.assertEqual(count_growth(50, 0), 0)
        self.assertEqual(count_growth(0, 0), 0)

    def test_growth_percentage(self):
        self.assertEqual(count_growth(150, 100), 50)
        self.assertEqual(count_growth(50, 100), -50)
        self.assertAlmostEqual(count_growth(1, 3), -66.6666666, places=4)


class TestMetricsForFlow(unittest.TestCase):

    def setUp(self):
        self.metrics = [
            Metric(id="M1", name="Opened Email XyZ1"),
            Metric(id="M2", name="Clicked Email"),
            Metric(id="M3", name="XyZ1 Placed Order"),
            Metric(id="M4", name=""),
        ]

    def test_name_substring_match(self):
        self.assertEqual([m.id for m in metrics_for_flow("XyZ1", self.metrics)], ["M1", "M3"])
        self.assertEqual(metrics_for_flow("NOPE", self.metrics), [])

    def test_explicit_filter_wins(self):
        self.assertEqual([m.id for m in metrics_for_flow("XyZ1", self.metrics, metric_ids=["M2"])], ["M2"])


class TestFlowRecord(unittest.TestCase):

    def test_flow_to_airtable_record(self):
        flow = Flow(
            id="F1", name="Welcome Series", status="live", trigger_type="Added to List",
            created=datetime(2025, 1, 1, tzinfo=timezone.utc), updated=datetime(2025, 2, 1, tzinfo=timezone.utc),
        )
        record = flow_to_airtable_record(flow, current_count=150, previous_count=100,
                                         message_count=2, action_count=1, metric_count=3)
        self.assertEqual(list(record.keys()), ["fields"])
        fields = record["fields"]
        self.assertEqual(fields["Flow ID"], "F1")
        self.assertEqual(fields["Flow Name"], "Welcome Series")
        self.assertEqual(fields["Status"], "unknown")
        self.assertEqual(fields["Trigger Type"], "Added to List")
        self.assertEqual(fields["Created At"], "2025-01-01T00:00:00Z")
        self.assertEqual(fields["Updated At"], "2025-02-01T00:00:00Z")
        self.assertEqual(fields["Current Period Count"], 150)
        self.assertEqual(fields["Previous Period Count"], 100)
        self.assertEqual(fields["Count Growth %"], 50)
        self.assertEqual(fields["Message Count"], 2)
        self.assertEqual(fields["Action Count"], 1)
        self.assertEqual(fields["Metric Count"], 3)
        self.assertNotIn("id", fields)

    def test_missing_timestamps_default_to_now(self):
        record = flow_to_airtable_record(Flow(id="F2"), 50, 0, 0, 0, 0)
        self.assertTrue(record["fields"]["Created At"].endswith("Z"))
        self.assertEqual(record["fields"]["Count Growth %"], 0)
        self.assertEqual(record["fields"]["Flow Name"], "Unnamed Flow")

    def test_status_column_keeps_klaviyo_status(self):
        self.assertEqual(status_column(Flow(id="F1", status="live", raw_status="live")), "live")
        self.assertEqual(status_column(Flow(id="F1", status="manual", raw_status="manual")), "manual")
        self.assertEqual(status_column(Flow(id="F1", status="Draft", raw_status="Draft")), "draft")
        self.assertEqual(status_column(Flow(id="F1")), FlowStatus.UNKNOWN.value)

    def test_failed_flow_record(self):
        failed = FailedFlowRecord(flow_action_id="A1", reason="Action not found (404)", status=404,
                                  timestamp="2026-01-01T00:00:00.000Z")
        self.assertEqual(failed_flow_to_airtable_record(failed), {
            "fields": {
                "Flow Action ID": "A1",
                "Error Reason": "Action not found (404)",
                "Status Code": "404",
                "Timestamp": "2026-01-01T00:00:00.000Z",
                "Is Error": True,
            }
        })


if __name__ == '__main__':
    unittest.main()
