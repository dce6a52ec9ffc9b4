from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    supabase_url: str = "http://localhost:54321"
    supabase_anon_key: str = ""
    supabase_service_role_key: str | None = None
    session_secret: str = "change-me"
    jwt_algorithm: str = "HS256"
    session_token_expiration_minutes: int = 720
    shadow_storage_key: str = "garage_shadow_user"
    signout_timeout_seconds: float = 3.0
    loading_watchdog_seconds: float = 7.0
    tab_idle_timeout_minutes: int = 120
    tab_sweep_interval_seconds: float = 60.0
    profile_retry_delays_seconds: list[float] = [1.0, 2.0]
    master_admin_id: str | None = None
    master_admin_email: str | None = None
    cors_allowed_origins: list[str] = ["*"]

    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )


settings = Settings()
