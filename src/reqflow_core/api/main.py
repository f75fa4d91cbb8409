"""ReqFlow Core API entry point (uvicorn reqflow_core.api.main:app)."""
import logging

from ..config import get_settings
from .app import create_app

settings = get_settings()

# Configure logging
logging.basicConfig(
    level=settings.log_level,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger("reqflow-core")
logger.info("Starting ReqFlow Core API")

app = create_app(settings)
