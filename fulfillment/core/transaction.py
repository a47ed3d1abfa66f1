"""
Transaction boundary for service methods.

A decorated method runs as one unit of work on ``self.db``: it commits
when the body returns and rolls back when it raises, so a failed
secondary write never leaves a transition half-applied.

Usage:
    class DeliveryNoteService:
        @transactional
        async def confirm(self, dn_id, user_id):
            ...
"""
from functools import wraps
import logging

from fulfillment.core.exceptions import FulfillmentError

logger = logging.getLogger(__name__)


def transactional(func):
    @wraps(func)
    async def wrapper(self, *args, **kwargs):
        try:
            result = await func(self, *args, **kwargs)
            await self.db.commit()
            return result
        except FulfillmentError as e:
            await self.db.rollback()
            logger.warning(f"{type(self).__name__}.{func.__name__} rejected: {e.message}")
            raise
        except Exception:
            await self.db.rollback()
            logger.exception(f"{type(self).__name__}.{func.__name__} failed")
            raise

    return wrapper
