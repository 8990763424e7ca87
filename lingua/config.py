from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Persistence
    data_dir: str = "data"
    uploads_dir: str = "uploads"

    # Blob storage: "local" or "oss" (S3-compatible object store)
    storage_mode: str = "local"
    oss_bucket: str = ""
    oss_region: str = ""
    oss_endpoint: str = ""
    oss_access_key_id: str = ""
    oss_access_key_secret: str = ""
    oss_custom_domain: str = ""

    # Migration
    legacy_storage_domain: str = "aliyuncs.com"
    migration_log_limit: int = 500

    # Speech synthesis (soundoftext.com)
    tts_base_url: str = "https://api.soundoftext.com"
    tts_engine: str = "Google"
    tts_voice: str = "th-TH"
    tts_poll_interval_seconds: float = 1.0
    tts_poll_attempts: int = 10

    # Audio completion
    word_delay_seconds: float = 3.0
    audio_schedule_hour: int = 3
    audio_schedule_minute: int = 0
    scheduler_enabled: bool = True

    # Admin
    admin_password: str = ""

    # Server
    host: str = "127.0.0.1"
    port: int = 8000
    log_level: str = "INFO"

    model_config = {"env_file": ".env", "extra": "ignore"}


settings = Settings()
