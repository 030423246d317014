"""
Entry point for the bookkeeping service: loads .env, checks the settings and
serves the FastAPI app with uvicorn.
"""
import sys
from pathlib import Path

PROJECT_ROOT = Path(__file__).parent
sys.path.insert(0, str(PROJECT_ROOT))

from dotenv import load_dotenv

from core.config import Settings, get_settings
from core.exceptions import ConfigurationError
from core.logger import setup_logger

ENV_FILE = PROJECT_ROOT / ".env"
if ENV_FILE.exists():
    load_dotenv(ENV_FILE)
else:
    print(f"Warning: {ENV_FILE.name} not found, reading settings from the environment only.")

logger = setup_logger(__name__)


def log_startup(settings: Settings) -> None:
    """Report which optional integrations are active."""
    logger.info(f"Starting {settings.app_name}")
    logger.info(f"Database: {settings.database_path} | Exports: {settings.export_path}")
    logger.info(f"Default currency: {settings.default_currency}")
    logger.info(f"Email delivery: {'on' if settings.email_configured else 'off (sends are skipped)'}")
    logger.info(f"AI insights: {'on, model ' + settings.openai_model if settings.openai_api_key else 'off'}")
    if not settings.exchange_rate_api_key:
        logger.warning("EXCHANGE_RATE_API_KEY not set; foreign amounts will be recorded at estimated rates")
    if not settings.cron_secret:
        logger.warning("CRON_SECRET not set; /cron/smart-notifications is unprotected")


def main():
    try:
        settings = get_settings()
        log_startup(settings)

        import uvicorn
        from app.api import app

        uvicorn.run(app, host=settings.host, port=settings.port, log_level=settings.log_level.lower())

    except ConfigurationError as e:
        logger.error(f"Configuration error: {e.message} {e.details or ''}")
        sys.exit(1)

    except Exception as e:
        logger.error(f"Failed to start application: {e}", exc_info=True)
        sys.exit(1)


if __name__ == "__main__":
    main()
