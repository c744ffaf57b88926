import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Iterable, List, Optional

from pydantic import ValidationError

from ..api.airtable_client import AirtableClient
from ..api.exceptions import APIClientError, SyncConnectionError
from ..api.klaviyo_client import KlaviyoClient
from ..config import Settings, get_settings
from ..models.flow import Flow, FlowAction, FlowMessage
from ..models.metrics import Metric, MetricAggregateQuery, MetricAggregateResult
from ..models.sync import FlowError, SyncMetricsSummary, SyncReport
from ..utils.airtable_converter import (
    failed_flow_to_airtable_record, flow_to_airtable_record, metrics_for_flow
)

logger = logging.getLogger(__name__)

FLOWS_TABLE = "Flows"
FAILED_FLOWS_TABLE = "Failed_Flows"


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class SyncService:
    """
    Runs one Klaviyo -> Airtable sync.

    Connect, extract flows and metrics, enrich each flow sequentially, load the
    results and report. A failure inside one flow is recorded and skipped; only
    connection failures and an unrecoverable load of the flows table are fatal.
    """

    def __init__(
        self,
        klaviyo_client: KlaviyoClient,
        airtable_client: AirtableClient,
        flows_table: str = FLOWS_TABLE,
        failed_flows_table: str = FAILED_FLOWS_TABLE,
        metric_ids: Optional[Iterable[str]] = None,
        now: Callable[[], datetime] = _utc_now,
    ):
        self.klaviyo = klaviyo_client
        self.airtable = airtable_client
        self.flows_table = flows_table
        self.failed_flows_table = failed_flows_table
        self.metric_ids = list(metric_ids) if metric_ids is not None else None
        self.now = now

    def run(self) -> SyncReport:
        logger.info("Starting Klaviyo to Airtable sync")
        self._connect()

        raw_flows = self.klaviyo.get_all_flows()
        logger.info(f"Found {len(raw_flows)} flows")
        metrics = self._fetch_metrics()
        logger.info(f"Found {len(metrics)} metrics")

        flow_records: List[Dict[str, Any]] = []
        flow_errors: List[FlowError] = []
        total_messages = 0

        for raw_flow in raw_flows:
            flow_id = str(raw_flow.get("id", "")) if isinstance(raw_flow, dict) else ""
            try:
                record, message_count = self._process_flow(raw_flow, metrics)
            except Exception as e:
                logger.error(f"Error processing flow {flow_id}: {e}")
                flow_errors.append(FlowError(flow_id=flow_id, error=str(e) or type(e).__name__))
                continue
            flow_records.append(record)
            total_messages += message_count

        if flow_errors:
            logger.warning(f"Errors occurred while processing {len(flow_errors)} flows: {[e.flow_id for e in flow_errors]}")

        failed_flows = self.klaviyo.get_failed_flows()
        logger.info(f"Found {len(failed_flows)} failed flow actions to report")

        created_ids = self._load_flows(flow_records)
        reported_ids = self._load_failed_flows([failed_flow_to_airtable_record(f) for f in failed_flows])

        report = SyncReport(
            success=True,
            flows_processed=len(raw_flows),
            flows_created=len(created_ids),
            flows_with_errors=len(flow_errors),
            failed_flows_reported=len(reported_ids),
            flow_errors=flow_errors,
            metrics=SyncMetricsSummary(
                total_metrics=len(metrics),
                total_messages=total_messages,
                total_failed_flows=len(failed_flows),
            ),
        )
        logger.info(
            f"Sync completed: processed={report.flows_processed}, created={report.flows_created}, "
            f"errors={report.flows_with_errors}, failed_actions_reported={report.failed_flows_reported}"
        )
        return report

    def _connect(self):
        """Both connection tests must pass before anything is fetched."""
        checks = (
            ("Klaviyo", self.klaviyo.test_connection),
            ("Airtable", lambda: self.airtable.test_connection(self.flows_table)),
        )
        for name, test_connection in checks:
            logger.info(f"Testing {name} connection...")
            try:
                test_connection()
            except APIClientError as e:
                logger.error(f"{name} connection test failed: {e}")
                raise SyncConnectionError(f"{name} connection failed: {e}", status_code=e.status_code) from e
            logger.info(f"{name} connection successful")

    def _fetch_metrics(self) -> List[Metric]:
        response = self.klaviyo.get_metrics()
        metrics = []
        for item in response.get("data") or []:
            if not isinstance(item, dict) or not item.get("id"):
                logger.warning(f"Skipping malformed metric entry: {item}")
                continue
            try:
                metrics.append(Metric.from_api(item))
            except ValidationError as e:
                logger.warning(f"Skipping invalid metric entry {item.get('id')}: {e}")
        return metrics

    def _process_flow(self, raw_flow: Dict[str, Any], metrics: List[Metric]):
        """Enriches one flow. Returns its Airtable record and the number of messages found."""
        flow = Flow.from_api(raw_flow)
        logger.info(f"Processing flow {flow.id} ({flow.name})...")

        actions = [
            FlowAction.from_api(item, flow_id=flow.id)
            for item in self.klaviyo.get_flow_actions(flow.id).get("data") or []
            if isinstance(item, dict)
        ]
        logger.info(f"Found {len(actions)} actions for flow {flow.id}")

        messages: List[FlowMessage] = []
        for action in actions:
            response = self.klaviyo.get_flow_messages(action.id)
            messages.extend(
                FlowMessage.from_api(item, flow_action_id=action.id)
                for item in response.get("data") or []
                if isinstance(item, dict)
            )
        logger.info(f"Found {len(messages)} messages for flow {flow.id}")

        flow_metrics = metrics_for_flow(flow.id, metrics, self.metric_ids)
        logger.info(f"Found {len(flow_metrics)} metrics for flow {flow.id}")

        current_year = self.now().year
        metric_ids = [m.id for m in flow_metrics]
        current_count = self._aggregate_count(metric_ids, current_year)
        previous_count = self._aggregate_count(metric_ids, current_year - 1)

        record = flow_to_airtable_record(
            flow,
            current_count=current_count,
            previous_count=previous_count,
            message_count=len(messages),
            action_count=len(actions),
            metric_count=len(flow_metrics),
        )
        logger.info(f"Successfully processed flow {flow.id}")
        return record, len(messages)

    def _aggregate_count(self, metric_ids: List[str], year: int) -> float:
        """Total `count` measurement for the metrics over one calendar year."""
        if not metric_ids:
            return 0
        query = MetricAggregateQuery.for_year(metric_ids, year)
        response = self.klaviyo.query_metric_aggregate(query.to_payload())
        return MetricAggregateResult.from_response(response).total("count")

    def _load_flows(self, records: List[Dict[str, Any]]) -> List[str]:
        if not records:
            logger.warning("No flow records to create in Airtable")
            return []
        logger.info(f"Creating {len(records)} flow records in Airtable...")
        created = self.airtable.create_records(self.flows_table, records)
        logger.info(f"Successfully created {len(created)} flow records in Airtable")
        return created

    def _load_failed_flows(self, records: List[Dict[str, Any]]) -> List[str]:
        """Writing the failures table is best effort; it never fails the run."""
        if not records:
            return []
        try:
            created = self.airtable.create_records(self.failed_flows_table, records)
        except APIClientError as e:
            logger.error(f"Error creating failed flow records: {e}")
            logger.info(
                f'You may need to create a "{self.failed_flows_table}" table in your Airtable base with fields: '
                "Flow Action ID, Error Reason, Status Code, Timestamp, Is Error"
            )
            return list(getattr(e, "created", []) or [])
        logger.info(f"Successfully created {len(created)} failed flow records in Airtable")
        return created


def run_sync(klaviyo_api_key: str, airtable_api_key: str, airtable_base_id: str,
             settings: Optional[Settings] = None) -> SyncReport:
    """
    Builds both clients from the given credentials and runs one sync.

    Raises:
        SyncConnectionError: a connection test failed.
        MultiBatchFailureError: the flows table could not be fully written.
    """
    settings = settings or get_settings()
    klaviyo = KlaviyoClient(
        api_key=klaviyo_api_key,
        base_url=settings.KLAVIYO_BASE_URL,
        revision=settings.KLAVIYO_REVISION,
        max_retries=settings.MAX_RETRIES,
        initial_backoff=settings.INITIAL_BACKOFF_SECONDS,
    )
    airtable = AirtableClient(
        api_key=airtable_api_key,
        base_id=airtable_base_id,
        base_url=settings.AIRTABLE_BASE_URL,
        batch_size=settings.AIRTABLE_BATCH_SIZE,
        batch_delay=settings.AIRTABLE_BATCH_DELAY_SECONDS,
        max_retries=settings.MAX_RETRIES,
        initial_backoff=settings.INITIAL_BACKOFF_SECONDS,
    )
    service = SyncService(
        klaviyo,
        airtable,
        flows_table=settings.AIRTABLE_FLOWS_TABLE,
        failed_flows_table=settings.AIRTABLE_FAILED_FLOWS_TABLE,
    )
    return service.run()
