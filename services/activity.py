import logging

from db import activity_logs_collection
from utils import utc_now

logger = logging.getLogger(__name__)


def log_activity(action: str, entity_type: str, entity_id=None, user_id=None, donor_id=None, details=None):
    """Append an audit entry shown on the dashboard feed and donor timeline."""
    entry = {
        "action": action,
        "entity_type": entity_type,
        "entity_id": str(entity_id) if entity_id is not None else None,
        "user_id": user_id,
        "donor_id": donor_id,
        "details": details or {},
        "created_at": utc_now(),
    }
    activity_logs_collection.insert_one(entry)
    logger.info("%s %s %s", action, entity_type, entity_id)
    return entry
