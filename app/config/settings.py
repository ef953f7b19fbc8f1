from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional, List


class Settings(BaseSettings):
    # Supabase
    supabase_url: str = ""
    supabase_key: str = ""
    supabase_service_role_key: Optional[str] = None  # Used by queue workers and the reaper (RLS bypass)

    # Redis (Celery broker, live log bridge, locks, state tokens)
    redis_url: str = "redis://localhost:6379/0"

    # Container registry
    registry_url: str = "registry.example.com"
    registry_user: str = ""
    registry_password: str = ""

    # Build sandbox
    builder_image: str = "gcr.io/kaniko-project/executor:latest"
    build_job_template_path: Optional[str] = None  # defaults to app/templates/build-job.yaml
    build_timeout_seconds: int = 600
    pod_schedule_retries: int = 30
    pod_poll_interval_seconds: float = 2.0
    pod_ready_timeout_seconds: int = 120
    log_drain_timeout_seconds: float = 10.0

    # Application rollout
    rollout_timeout_seconds: int = 300
    rollout_poll_interval_seconds: float = 5.0
    base_domain: str = "127.0.0.1.nip.io"
    deployment_port: int = 8081
    deployment_url_scheme: str = "http"
    ingress_class: str = "traefik"
    cluster_issuer: str = "letsencrypt-prod"

    # Lifecycle
    deployment_ttl_minutes: int = 60
    reaper_interval_seconds: int = 300
    max_active_deployments: int = 2

    # Queue retries
    build_max_retries: int = 3
    deploy_max_retries: int = 3
    retry_countdown_seconds: int = 10

    # GitHub App
    github_app_id: Optional[str] = None
    github_app_name: Optional[str] = None
    github_private_key: Optional[str] = None  # PEM as string (\n escaped allowed)
    github_api_url: str = "https://api.github.com"
    state_ttl_seconds: int = 300

    # App
    app_name: str = "launchpad-backend"
    debug: bool = False
    environment: str = "development"  # development | staging | production
    log_level: str = "INFO"
    frontend_url: str = "http://localhost:3000"
    cors_origins: str = "http://localhost:3000,http://localhost:5173,http://127.0.0.1:3000,http://127.0.0.1:5173"
    rate_limit: str = "100/minute"  # slowapi format, e.g. "100/minute"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    def get_cors_origins_list(self) -> List[str]:
        return [o.strip() for o in self.cors_origins.split(",") if o.strip()]

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        env_prefix="",  # No prefix needed
        extra="ignore"
    )


settings = Settings()
