import unittest

from flowsync.models.flow import Flow, FlowAction, FlowMessage, FlowStatus
from flowsync.models.metrics import Metric, MetricAggregateQuery, MetricAggregateResult, year_filter
from flowsync.models.sync import SyncReport, SyncMetricsSummary, FlowError


class TestFlowModels(unittest.TestCase):

    def test_flow_status_parse(self):
        self.assertEqual(FlowStatus.parse("Active"), FlowStatus.ACTIVE)
        self.assertEqual(FlowStatus.parse("draft"), FlowStatus.DRAFT)
        self.assertEqual(FlowStatus.parse("manual"), FlowStatus.UNKNOWN)
        self.assertEqual(FlowStatus.parse(None), FlowStatus.UNKNOWN)

    def test_flow_from_api(self):
        flow = Flow.from_api({
            "type": "flow",
            "id": "XyZ1",
            "attributes": {
                "name": "Abandoned Cart",
                "status": "live",
                "archived": False,
                "trigger_type": "Metric",
                "created": "2023-02-01T00:00:00+00:00",
                "updated": "2023-02-02T00:00:00Z",
            },
        })
        self.assertEqual(flow.id, "XyZ1")
        self.assertEqual(flow.name, "Abandoned Cart")
        self.assertEqual(flow.status, FlowStatus.UNKNOWN)
        self.assertEqual(flow.raw_status, "live")
        self.assertEqual(flow.trigger_type, "Metric")
        self.assertEqual(flow.created.year, 2023)

    def test_flow_from_api_defaults(self):
        flow = Flow.from_api({"id": "F1"})
        self.assertEqual(flow.name, "Unnamed Flow")
        self.assertEqual(flow.trigger_type, "unknown")
        self.assertIsNone(flow.created)
        self.assertIsNone(flow.raw_status)

    def test_flow_is_read_only(self):
        flow = Flow(id="F1")
        with self.assertRaises(Exception):
            flow.name = "changed"

    def test_action_and_message(self):
        action = FlowAction.from_api({"id": "A1", "attributes": {"action_type": "SEND_EMAIL"}}, flow_id="F1")
        self.assertEqual(action.flow_id, "F1")
        self.assertEqual(action.action_type, "SEND_EMAIL")
        message = FlowMessage.from_api(
            {"id": "M1", "attributes": {"channel": "email", "content": {"subject": "Hi"}, "status": "live"}},
            flow_action_id="A1",
        )
        self.assertEqual(message.channel, "email")
        self.assertEqual(message.subject_line, "Hi")
        self.assertEqual(message.status, "live")


class TestMetricModels(unittest.TestCase):

    def test_metric_from_api_integration_object(self):
        metric = Metric.from_api({"id": "M1", "attributes": {"name": "Opened Email", "integration": {"name": "Klaviyo"}}})
        self.assertEqual(metric.integration, "Klaviyo")
        self.assertEqual(Metric.from_api({"id": "M2", "attributes": {"integration": "email"}}).integration, "email")

    def test_query_for_year(self):
        query = MetricAggregateQuery.for_year(["M1", "M2"], 2026)
        self.assertEqual(query.to_payload(), {
            "metric_id": ["M1", "M2"],
            "interval": "day",
            "measurements": ["count"],
            "timezone": "UTC",
            "filter": "greater_or_equal(datetime,2026-01-01),less_or_equal(datetime,2026-12-31)",
        })
        self.assertEqual(year_filter(2025), "greater_or_equal(datetime,2025-01-01),less_or_equal(datetime,2025-12-31)")

    def test_aggregate_total(self):
        result = MetricAggregateResult.from_response({"data": {"attributes": {
            "dates": ["2026-01-01", "2026-01-02"],
            "data": [
                {"dimensions": [], "measurements": {"count": [1, 2.5, None]}},
                {"dimensions": [], "measurements": {"count": [10]}},
                {"dimensions": [], "measurements": {}},
                {"measurements": {"count": "garbage"}},
            ],
        }}})
        self.assertEqual(result.total("count"), 13.5)
        self.assertEqual(result.total("unique"), 0)
        self.assertEqual(len(result.dates), 2)

    def test_aggregate_malformed_response(self):
        self.assertEqual(MetricAggregateResult.from_response({}).total(), 0)
        self.assertEqual(MetricAggregateResult.from_response({"data": {"attributes": {"data": None}}}).total(), 0)


class TestSyncReport(unittest.TestCase):

    def test_to_api_dict_uses_camel_case(self):
        report = SyncReport(
            flows_processed=2, flows_created=2, flows_with_errors=1, failed_flows_reported=1,
            flow_errors=[FlowError(flow_id="F9", error="boom")],
            metrics=SyncMetricsSummary(total_metrics=4, total_messages=2, total_failed_flows=1),
        )
        self.assertEqual(report.to_api_dict(), {
            "success": True,
            "flowsProcessed": 2,
            "flowsCreated": 2,
            "flowsWithErrors": 1,
            "failedFlowsReported": 1,
            "flowErrors": [{"flowId": "F9", "error": "boom"}],
            "metrics": {"totalMetrics": 4, "totalMessages": 2, "totalFailedFlows": 1},
        })


if __name__ == '__main__':
    unittest.main()
