"""
Processing queue runner.

Pending rows in processing_queue point at a content row (description,
figure, chalk talk or researcher). Each run takes one batch, processes
the items in order and records the outcome on the queue row.
"""

import logging
from datetime import datetime, timezone
from typing import Dict, Any

from src.core.enums import ProcessingStatus, QUEUE_CONTENT_TABLES
from src.vectorization.processors import PROCESSORS

logger = logging.getLogger(__name__)

BATCH_SIZE = 10
MAX_RETRIES = 3


def process_item(item: Dict[str, Any], store, index, files, llm):
    """Load the content row for a queue item and run its processor."""
    content_type = item["content_type"]
    table = QUEUE_CONTENT_TABLES.get(content_type)
    if table is None:
        raise ValueError(f"Unknown content type: {content_type}")

    content = store.get(table, item["content_id"])
    if not content:
        raise ValueError("Content not found")

    processor = PROCESSORS[content_type](content, item.get("project_id"), store, index, files=files, llm=llm)
    if not processor.validate():
        raise ValueError(f"Validation failed for {content_type} {item['content_id']}")
    return processor.process()


def process_queue(store, index, files, llm, batch_size: int = BATCH_SIZE) -> Dict[str, Any]:
    """
    Process one batch of pending queue items.

    Returns:
        {"message": "No items to process"} or {"results": [{id, status, error?}]}
    """
    items = store.select(
        "processing_queue",
        {"status": ProcessingStatus.PENDING.value},
        order_by=["-priority", "created_at"],
        limit=batch_size,
    )

    if not items:
        return {"message": "No items to process"}

    logger.info(f"Processing {len(items)} queue items")
    results = []

    for item in items:
        try:
            store.update("processing_queue", {"id": item["id"]}, {"status": ProcessingStatus.PROCESSING.value})
            process_item(item, store, index, files, llm)
            store.update("processing_queue", {"id": item["id"]}, {
                "status": ProcessingStatus.COMPLETED.value,
                "processed_at": datetime.now(timezone.utc).isoformat(),
            })
            results.append({"id": item["id"], "status": "success"})

        except Exception as e:
            retry_count = (item.get("retry_count") or 0) + 1
            status = ProcessingStatus.ERROR.value if retry_count >= MAX_RETRIES else ProcessingStatus.PENDING.value
            logger.error(f"Queue item {item['id']} failed (attempt {retry_count}): {e}")

            store.update("processing_queue", {"id": item["id"]}, {
                "status": status,
                "retry_count": retry_count,
                "error_message": str(e),
            })
            results.append({"id": item["id"], "status": "error", "error": str(e)})

    return {"results": results}
