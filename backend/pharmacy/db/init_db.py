"""Create all tables. Run on app startup."""
import logging

from pharmacy.db.base import Base
from pharmacy.db.session import engine
from pharmacy.models import user, drug, sale  # noqa: F401 - register models

logger = logging.getLogger(__name__)


def init_db(bind=None):
    bind = bind or engine
    Base.metadata.create_all(bind=bind)
    logger.info(f"Database schema ready ({bind.url.get_backend_name()})")
