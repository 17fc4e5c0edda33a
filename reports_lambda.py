import logging
from typing import Any, Dict, List

import dynamo_utils
from policy import evaluate_reports

logger = logging.getLogger()
logger.setLevel(logging.INFO)


def check_reports(event_id: str) -> bool:
    """Deletes the event and its reports once the report threshold is reached."""
    reports = dynamo_utils.get_reports_for_event(event_id)
    decision = evaluate_reports(len(reports))
    if not decision.delete_target:
        return False

    dynamo_utils.delete_event(event_id)
    # reports filed after the query are swept by their own trigger
    removed = dynamo_utils.delete_reports(reports)
    logger.info("Event %s deleted after %d reports (%d reports removed)", event_id, decision.report_count, removed)
    return True


def lambda_handler(event, context) -> Dict[str, Any]:
    """Stream handler; failed records are returned so the stream redelivers them
    (needs ReportBatchItemFailures on the event source mapping)."""
    checked = set()
    failures: List[Dict[str, str]] = []
    for record, image in dynamo_utils.inserted_images(event):
        event_id = image.get("event_id")
        if not event_id or event_id in checked:
            continue
        checked.add(event_id)
        try:
            check_reports(event_id)
        except Exception as e:
            logger.exception("Report check for %s failed (record %s): %r", event_id, record.get("eventID"), e)
            failures.append({"itemIdentifier": dynamo_utils.sequence_number(record)})
    return {"batchItemFailures": failures}
