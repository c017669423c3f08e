from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    app_env: str = "dev"
    log_level: str = "INFO"

    storage_backend: str = "filesystem"
    storage_root: Path = Path("./uploads")

    s3_bucket: str = ""
    s3_key_prefix: str = ""
    s3_endpoint_url: str = ""
    s3_region: str = "us-east-1"
    aws_access_key_id: str = ""
    aws_secret_access_key: str = ""

    db_host: str = "localhost"
    db_port: int = 5432
    db_database: str = "phone_index"
    db_username: str = "phone_index"
    db_password: str = "secret"

    default_partition_size: int = 10000
    flush_chunk_records: int = 50000
    progress_interval_seconds: float = 5.0
    read_chunk_bytes: int = 10 * 1024 * 1024
    encoding_sample_bytes: int = 64 * 1024
    default_encoding: str = "auto"
    delimiter: str = "auto"
    min_fields: int = 2
    abort_on_write_failure: bool = False

    search_batch_size: int = 3
