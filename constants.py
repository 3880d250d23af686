import os

REDIS_HOST = os.getenv("REDIS_HOST", "localhost")
REDIS_PORT = int(os.getenv("REDIS_PORT", 6379))
REDIS_PASSWORD = os.getenv("REDIS_PASSWORD", None)
REDIS_DB = int(os.getenv("REDIS_DB", 0))

JWT_SECRET = os.getenv("JWT_SECRET", "change-me-before-deploying-this-service")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

DEFAULT_MAX_PARTICIPANTS = int(os.getenv("DEFAULT_MAX_PARTICIPANTS", 50))
DEFAULT_MEETING_TTL_SECONDS = int(os.getenv("DEFAULT_MEETING_TTL_SECONDS", 24 * 60 * 60))
MEETING_ID_LENGTH = int(os.getenv("MEETING_ID_LENGTH", 8))

ALLOWED_ORIGINS = [o.strip() for o in os.getenv("ALLOWED_ORIGINS", "*").split(",") if o.strip()]
