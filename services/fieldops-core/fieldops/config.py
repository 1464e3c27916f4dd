from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=None, env_prefix="", case_sensitive=False)

    app_name: str = "fieldops-core"
    api_prefix: str = "/api/v1"
    log_level: str = "INFO"

    default_tenant_id: str = "default"
    redis_url: str | None = None  # e.g. redis://localhost:6379/0; unset keeps sessions in-process only
    session_ttl_seconds: int = 86400
    database_url: str = "sqlite:///./data/fieldops.db"

    history_window: int = 5
    collaborator_timeout_seconds: float = 8.0

    # intent classification backend (OpenAI-compatible, JSON output)
    classifier_base_url: str = "http://llm:11434"
    classifier_model: str = "qwen3:0.6b"
    classifier_api_key: str | None = None
    classifier_enabled: bool = True

    llm_chat_path: str = "/v1/chat/completions"
    llm_timeout_seconds: float = 10.0

    # reply backends, tried in selection order: fast, legal, general, default
    fast_llm_base_url: str = "https://api.groq.com/openai"
    fast_llm_model: str = "llama-3.1-8b-instant"
    fast_llm_api_key: str | None = None

    legal_llm_base_url: str = "https://api.anthropic.com"
    legal_llm_model: str = "claude-3-5-sonnet-latest"
    legal_llm_api_key: str | None = None

    general_llm_base_url: str = "https://openrouter.ai/api"
    general_llm_model: str = "openrouter/auto"
    general_llm_api_key: str | None = None

    default_llm_base_url: str = "https://api.openai.com"
    default_llm_model: str = "gpt-4o-mini"
    default_llm_api_key: str | None = None

    # routing / location / knowledge collaborators
    routing_base_url: str = "http://routing-svc:8000"
    routing_api_key: str | None = None
    location_base_url: str | None = None
    knowledge_base_url: str | None = None

    # Baton Rouge; used when the location provider is unavailable
    default_location_lat: float = 30.4515
    default_location_lon: float = -91.1871

    reference_data_path: str | None = None  # defaults to the bundled statutes.json

    audit_to_database: bool = True


settings = Settings()
