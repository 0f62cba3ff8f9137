# evoting/audit.py
import logging
import math
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pymongo import DESCENDING
from pymongo.errors import PyMongoError

from evoting.config import AUDIT_COLLECTION_NAME
from evoting.database.connection import public_doc

logger = logging.getLogger(__name__)


class AuditLog:
    def __init__(self, db):
        self.collection = db[AUDIT_COLLECTION_NAME]

    def record(
        self,
        actor_id: Any,
        action: str,
        entity: str,
        entity_id: Any = None,
        details: Optional[Dict[str, Any]] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ) -> bool:
        """Append an audit entry. Failures are logged and never raised."""
        entry = {
            "adminId": actor_id,
            "action": action,
            "entity": entity,
            "entityId": entity_id,
            "details": details or {},
            "ipAddress": ip_address,
            "userAgent": user_agent,
            "timestamp": datetime.now(timezone.utc),
        }
        try:
            self.collection.insert_one(entry)
            return True
        except PyMongoError as e:
            logger.error(f"Failed to log audit trail for {action} {entity}: {e}")
            return False

    def list_logs(self, filters: Optional[Dict[str, Any]] = None, page: int = 1, limit: int = 50) -> Dict[str, Any]:
        filters = filters or {}
        query: Dict[str, Any] = {}
        for field in ("adminId", "action", "entity"):
            if filters.get(field):
                query[field] = filters[field]
        if filters.get("startDate") or filters.get("endDate"):
            query["timestamp"] = {}
            if filters.get("startDate"):
                query["timestamp"]["$gte"] = filters["startDate"]
            if filters.get("endDate"):
                query["timestamp"]["$lte"] = filters["endDate"]

        skip = (page - 1) * limit
        cursor = self.collection.find(query).sort("timestamp", DESCENDING).skip(skip).limit(limit)
        total = self.collection.count_documents(query)
        return {
            "logs": [public_doc(log) for log in cursor],
            "total": total,
            "pages": math.ceil(total / limit) if limit else 0,
            "currentPage": page,
        }
