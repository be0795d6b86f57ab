import logging
import re

logger = logging.getLogger(__name__)


def extract_record_id(topic: str | None, pattern: re.Pattern[str]) -> str | None:
    """Return the first capture group of ``pattern`` found in ``topic``.

    Meeting topics are free text typed by the host, so anything that does not
    match (including an empty topic) simply yields ``None``.
    """
    if not isinstance(topic, str) or not topic.strip():
        return None
    if pattern.groups < 1:
        return None

    match = pattern.search(topic)
    if not match:
        return None

    record_id = match.group(1)
    if not record_id:
        return None
    logger.info("Extracted record id=%s from topic=%r", record_id, topic)
    return record_id
