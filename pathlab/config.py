from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    database_url: str = "sqlite:///./pathology_reports.db"
    app_env: str = "dev"
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    allowed_origins: str = "http://localhost:4200"

    log_level: str = "INFO"
    log_json: bool = False

    report_id_prefix: str = "RPT"
    report_id_padding: int = 6
    report_counter_scope: str = "pathology_report"
    sequence_max_attempts: int = 5

    list_default_limit: int = 50
    list_max_limit: int = 200
    repair_default_limit: int = 200
    repair_max_limit: int = 2000


settings = Settings()
