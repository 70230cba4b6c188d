from pydantic import SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings with environment variable support."""
    
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )
    
    # AWS / Bedrock
    aws_region: str = "us-east-1"
    aws_profile: str | None = None
    aws_access_key_id: SecretStr | None = None
    aws_secret_access_key: SecretStr | None = None
    bedrock_endpoint_url: str | None = None
    connect_timeout: float = 10.0
    read_timeout: float = 300.0

    # Inference defaults applied when the request omits a value
    default_temperature: float = 1.0
    default_max_tokens: int = 2048
    default_top_p: float = 1.0
    max_tokens_limit: int = 8192

    # HTTP layer
    api_keys: str = ""  # Format: username1:token1;username2:token2;...
    api_token_prefix: str = "brg_"
    cors_origins: str = "*"  # Comma separated
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "info"


settings = Settings()
