"""Best-effort admin notification inserts."""
import logging
from typing import Any, Dict, Optional
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError

from ..db.session import get_session
from ..models.admin_notification import AdminNotification

logger = logging.getLogger(__name__)


def notify_admins(
    session_factory=get_session,
    *,
    type: str,
    title: str,
    message: Optional[str] = None,
    link: Optional[str] = None,
    data: Optional[Dict[str, Any]] = None,
) -> bool:
    """Insert an admin notification. Failures are logged and reported as False, never raised."""
    try:
        with session_factory() as session:
            session.add(
                AdminNotification(
                    id=str(uuid4()),
                    type=type,
                    title=title,
                    message=message,
                    link=link,
                    data=data or {},
                    is_read=False,
                )
            )
        return True
    except SQLAlchemyError:
        logger.exception("Failed to create admin notification %r", title)
        return False
