import os


class Settings:
    PROJECT_NAME: str = "medterm"
    DEBUG: bool = os.environ.get("MEDTERM_DEBUG", "false").lower() == "true"
    LOG_DIR: str = os.environ.get("MEDTERM_LOG_DIR", "log")
    LOG_FILE: str = "medterm.log"
    LOG_TO_DB: bool = os.environ.get("MEDTERM_LOG_TO_DB", "false").lower() == "true"
    DB_DIR: str = os.environ.get("MEDTERM_DB_DIR", "db")
    DB_FILE: str = "medterm.db"
    VOCAB_DIR: str = os.environ.get("MEDTERM_VOCAB_DIR", "vocabulary")
    DEFAULT_QUESTION_COUNT: int = 20
    SESSION_COOKIE_NAME: str = "quiz_session_id"
    SESSION_TIMEOUT_MINUTES: int = 120
    ROOT_PATH: str = os.environ.get("ROOT_PATH", "")

    # Hosted model
    OPENAI_API_KEY: str = os.environ.get("OPENAI_API_KEY", "")
    QUESTION_MODEL: str = os.environ.get("MEDTERM_QUESTION_MODEL", "gpt-5-mini")
    COACH_MODEL: str = os.environ.get("MEDTERM_COACH_MODEL", "gpt-4o-mini")
    MAX_PROMPT_TERMS: int = 500
    MAX_PAST_TEXT_CHARS: int = 8000
    MAX_COACH_ITEMS: int = 30


settings = Settings()
