from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    # Basic auth (single operator)
    BASIC_USER: str = "admin"
    BASIC_PASS: str = "changeme"

    # Job store / lead table
    DATABASE_URL: str = "sqlite:///./leads.db"

    # Queue transport: "sqs" in production, "db" for a single-box setup
    QUEUE_BACKEND: str = "db"
    AWS_REGION: str = "us-east-1"
    LEAD_SCRAPE_QUEUE_URL: str | None = None
    LEAD_SCRAPE_DLQ_URL: str | None = None
    QUEUE_NAME: str = "lead-scrape-jobs"
    VISIBILITY_TIMEOUT_S: int = 120  # must cover one full URL batch
    MAX_RECEIVE_COUNT: int = 3
    WAIT_TIME_S: int = 10            # SQS long poll
    POLL_INTERVAL_S: float = 1.0     # db backend idle sleep

    # Fetching / extraction
    FETCH_TIMEOUT_S: int = 15
    USER_AGENT: str = "Mozilla/5.0 (compatible; LeadScraperBot/1.0)"
    DEFAULT_URL_LIMIT: int = 20
    DEFAULT_PER_SITE_PAGE_LIMIT: int = 5
    MAX_CONTACTS_PER_LEAD: int = 25

    # Synchronous scrape wall-clock budget
    SYNC_SCRAPE_TIMEOUT_S: int = 60

    # Reconciliation sweep
    STALE_JOB_MINUTES: int = 15
    MAX_ENQUEUE_ATTEMPTS: int = 3

    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

settings = Settings()

def get_settings() -> Settings:
    return settings
