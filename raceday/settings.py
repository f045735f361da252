from pydantic_settings import BaseSettings

class Settings(BaseSettings):
    # Database
    RACEDAY_DB_URL: str = "sqlite:///./raceday.db"

    # UI
    RESULTS_POLL_MS: int = 10000
    BOARD_ROTATE_MS: int = 3000

    # Finish capture (operator console)
    CAPTURE_API_URL: str = "http://localhost:8000"
    CAPTURE_QUEUE_URL: str = "sqlite:///./capture_queue.db"
    CAPTURE_TIMEOUT_SECONDS: float = 5.0
    CAPTURE_SYNCED_RETENTION_SECONDS: int = 10
    CONNECTIVITY_PROBE_SECONDS: float = 3.0

    LOG_LEVEL: str = "INFO"

    class Config:
        env_file = ".env"
        case_sensitive = True

settings = Settings()
