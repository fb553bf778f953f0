import logging

from authgate.app import init_db
from authgate.core.utils.config import construct_prod_settings
from authgate.core.utils.log import LogConfig

# This script should be run once before starting the workers:
# the tables are then created by a single process, and each worker only finds an up to date database at startup.

# We call `construct_prod_settings()` and not the dependency `get_settings()` because
# we know we want to use the production settings
settings = construct_prod_settings()

# Initialize loggers
LogConfig().initialize_loggers(settings=settings)

authgate_error_logger = logging.getLogger("authgate.error")

authgate_error_logger.warning(
    "Initializing the database before starting the Uvicorn workers.",
)

init_db(
    settings=settings,
    authgate_error_logger=authgate_error_logger,
    drop_db=False,
)
