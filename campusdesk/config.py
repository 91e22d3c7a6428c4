from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file='.env', extra='ignore')

    app_name: str = 'Campus Desk'
    app_env: str = 'local'
    app_timezone: str = 'Asia/Karachi'
    app_base_url: str = 'http://127.0.0.1:8000'

    api_url: str = 'http://localhost:5000/api'
    api_connect_timeout: float = 5.0
    api_read_timeout: float = 30.0

    supabase_url: str = ''
    supabase_anon_key: str = ''
    supabase_logo_bucket: str = 'school-logos'
    supabase_logo_cache_control: str = '3600'

    auth_secret: str = 'change-me'
    auth_session_max_age_seconds: int = 60 * 60 * 12
    auth_cookie_secure: bool = False

    cache_backend: str = 'memory'
    cache_redis_url: str | None = None
    cache_namespace: str = 'campusdesk'
    cache_max_entries: int = 5000
    binder_ttl_seconds: int = 0

    default_page_size: int = 10
    print_delay_ms: int = 250
    invoice_brand: str = 'STUDENTLY'
    invoice_tagline: str = 'School Management System'
    invoice_support_email: str = 'support@studently.com'
    currency_symbol: str = '$'

    metrics_slow_ms: int = 500


settings = Settings()
