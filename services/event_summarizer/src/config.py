# services/event_summarizer/src/config.py

import os
import logging
from dataclasses import dataclass

from dotenv import load_dotenv

# ———————————————————————————————
# Fixed model settings (not configurable)
# ———————————————————————————————
GEMINI_MODEL_NAME        = 'gemini-2.0-flash-001'
GEMINI_MAX_OUTPUT_TOKENS = 2048
GEMINI_TEMPERATURE       = 0.9
GEMINI_TOP_P             = 1.0

# env var name -> SummarizerConfig field
REQUIRED_VARS = {
    'SERVER_API': 'server_api',
    'GOOGLE_CLOUD_PROJECT_ID': 'project_id',
    'GOOGLE_CLOUD_LOCATION': 'location',
    'GOOGLE_CLOUD_ENDPOINT_ID': 'endpoint_id',
    'GOOGLE_APPLICATION_CREDENTIALS': 'credentials_path',
}


@dataclass(frozen=True)
class SummarizerConfig:
    """Per-request view of the service configuration."""
    server_api: str | None = None
    project_id: str | None = None
    location: str | None = None
    endpoint_id: str | None = None
    credentials_path: str | None = None
    app_env: str = 'production'

    def missing(self) -> list[str]:
        """Names of the required environment variables that are unset or empty."""
        return [name for name, field in REQUIRED_VARS.items() if not getattr(self, field)]

    @property
    def is_development(self) -> bool:
        return self.app_env == 'development'


def load_config(environ=None) -> SummarizerConfig:
    """Build a SummarizerConfig from the environment (defaults to os.environ)."""
    env = os.environ if environ is None else environ
    values = {field: env.get(name) for name, field in REQUIRED_VARS.items()}
    return SummarizerConfig(app_env=env.get('APP_ENV', 'production'), **values)


def setup_logging():
    """Load .env and configure root logging (quiet 3rd-party noise)."""
    load_dotenv(override=False)
    logging.basicConfig(
        level=os.getenv('LOG_LEVEL', 'INFO').upper(),
        format='%(asctime)s - %(levelname)s [%(filename)s:%(lineno)d] - %(message)s',
        datefmt='%Y-%m-%d %H:%M:%S'
    )
    for logger_name in ["google.auth", "google_genai", "urllib3", "requests"]:
        logging.getLogger(logger_name).setLevel(logging.WARNING)
