import os

# Настройки PostgreSQL
POSTGRES_USER = os.getenv("POSTGRES_USER", "postgres")
POSTGRES_PASSWORD = os.getenv("POSTGRES_PASSWORD", "postgres")
POSTGRES_DB = os.getenv("POSTGRES_DB", "ecahub")
POSTGRES_HOST = os.getenv("POSTGRES_HOST", "db")
POSTGRES_PORT = os.getenv("POSTGRES_PORT", "5432")

DATABASE_URL = os.getenv(
    "DATABASE_URL",
    f"postgresql+asyncpg://{POSTGRES_USER}:{POSTGRES_PASSWORD}@{POSTGRES_HOST}:{POSTGRES_PORT}/{POSTGRES_DB}",
)

# Настройки JWT (токены выпускает внешний сервис авторизации)
JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

# Настройки среды
ENVIRONMENT = os.getenv("ENVIRONMENT", "production").lower()
DEBUG = ENVIRONMENT in ["development", "dev"]

# Настройки retry для базы данных
DB_RETRY_ATTEMPTS = int(os.getenv("DB_RETRY_ATTEMPTS", "3"))
DB_RETRY_DELAY = float(os.getenv("DB_RETRY_DELAY", "1.0"))
DB_RETRY_BACKOFF_FACTOR = float(os.getenv("DB_RETRY_BACKOFF_FACTOR", "2.0"))

# Настройки логирования
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO" if not DEBUG else "DEBUG")
LOG_FORMAT = os.getenv("LOG_FORMAT", "json" if not DEBUG else "text")

# Настройки приложения
APP_NAME = os.getenv("APP_NAME", "ECA Hub API")
APP_VERSION = os.getenv("APP_VERSION", "1.0.0")

# Фронтенды школы, которым разрешены запросы
CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv(
        "CORS_ORIGINS", "http://localhost:3000,http://localhost:8080"
    ).split(",")
    if origin.strip()
]

# Настройки ECA
ECA_DEFAULT_MAX_PRIORITY_CHOICES = int(
    os.getenv("ECA_DEFAULT_MAX_PRIORITY_CHOICES", "1")
)
ECA_DEFAULT_MAX_CHOICES_PER_DAY = int(os.getenv("ECA_DEFAULT_MAX_CHOICES_PER_DAY", "3"))
ECA_CANCEL_BELOW_MINIMUM_DEFAULT = (
    os.getenv("ECA_CANCEL_BELOW_MINIMUM_DEFAULT", "true").lower() == "true"
)


# Валидация критичных настроек
def validate_config():
    """Валидация конфигурации при запуске"""
    errors = []

    if not JWT_SECRET_KEY:
        errors.append("JWT_SECRET_KEY is required")

    if not POSTGRES_HOST:
        errors.append("POSTGRES_HOST is required")

    if DB_RETRY_ATTEMPTS < 1:
        errors.append("DB_RETRY_ATTEMPTS must be >= 1")

    if DB_RETRY_DELAY < 0:
        errors.append("DB_RETRY_DELAY must be >= 0")

    if ECA_DEFAULT_MAX_PRIORITY_CHOICES < 0:
        errors.append("ECA_DEFAULT_MAX_PRIORITY_CHOICES must be >= 0")

    if ECA_DEFAULT_MAX_CHOICES_PER_DAY < 1:
        errors.append("ECA_DEFAULT_MAX_CHOICES_PER_DAY must be >= 1")

    if errors:
        raise ValueError(f"Configuration errors: {'; '.join(errors)}")


# Автоматическая валидация при импорте (опционально)
if os.getenv("VALIDATE_CONFIG_ON_IMPORT", "false").lower() == "true":
    try:
        validate_config()
    except ValueError as e:
        print(f"⚠️  Configuration warning: {e}")
