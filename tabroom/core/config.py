from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Настройки приложения и окружения.
    app_name: str = "Tabroom"
    debug: bool = False
    database_url: str
    secret_key: str = "change_me"
    session_max_age: int = 60 * 60 * 12
    log_level: str = "INFO"
    # Пул для решателя жеребьёвки и расчёта таблиц.
    draw_workers: int = 2
    draw_response_deadline: float = 20.0
    draw_solver_time_limit: float | None = None
    broadcast_queue_size: int = 100

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")


settings = Settings()
