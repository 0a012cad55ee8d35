from pydantic_settings import BaseSettings, SettingsConfigDict
from typing import Optional, List


class Settings(BaseSettings):
    google_cloud_project: str = ""
    google_application_credentials: str = ""
    firestore_emulator_host: Optional[str] = None
    # CORS origins; set ALLOWED_ORIGINS env var for production (JSON list)
    allowed_origins: List[str] = [
        "http://localhost:5173",
        "http://localhost:3000",
        "http://127.0.0.1:5173",
    ]
    # Extra production origin (e.g. Cloud Run URL); appended to allowed_origins
    extra_origin: str = ""
    debug: bool = False

    # Merlin quiz closes after this many seconds, counted from the first vote
    quiz_timeout_seconds: int = 60
    # Default endgame mode for new games; a game may override it at creation
    use_parallel_quiz: bool = True
    # Seed for the game master's RNG (None = system entropy)
    rng_seed: Optional[int] = None

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_ignore_empty=True,
    )


settings = Settings()
