"""Environment-based configuration for the document extraction service."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Extraction service settings, loaded from environment variables."""

    # Server
    PORT: int = 8092
    LOG_LEVEL: str = "INFO"

    # Generative model (empty key = extraction disabled, local dev default)
    GEMINI_API_KEY: str = ""
    GEMINI_BASE_URL: str = "https://generativelanguage.googleapis.com"
    GEMINI_MODEL_ID: str = "gemini-2.0-flash"

    # Model call timeouts and retry (only timeouts are retried)
    MODEL_TIMEOUT_SECONDS: int = 120
    MODEL_CONNECT_TIMEOUT: int = 15
    MODEL_RETRY_ATTEMPTS: int = 2
    MODEL_RETRY_DELAY: float = 2.0
    MODEL_RETRY_BACKOFF: float = 2.0

    MAX_OUTPUT_TOKENS: int = 8192
    DETECTION_MAX_OUTPUT_TOKENS: int = 50

    # Extraction option defaults
    DEFAULT_INCLUDE_CONFIDENCE: bool = True
    DEFAULT_INCLUDE_POSITIONS: bool = False
    DEFAULT_DETECT_DOCUMENT_TYPE: bool = True
    DEFAULT_TEMPERATURE: float = 0.1

    # Persisted results (one JSON document per document id)
    RESULTS_DIR: str = "./results"

    model_config = {"env_prefix": "", "case_sensitive": True}


settings = Settings()
