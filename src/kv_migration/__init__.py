"""KV Bridge - Migrate keys from a Redis source to a Valkey target."""

import logging
import warnings

__version__ = "0.1.0"
__author__ = "KV Migration Team"
__license__ = "Apache-2.0"

# Suppress verbose third-party library logging
# These libraries generate excessive console output that clutters migration progress
logging.getLogger("redis").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy").setLevel(logging.WARNING)
logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

warnings.filterwarnings("ignore", category=DeprecationWarning, module="redis")
