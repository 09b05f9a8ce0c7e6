import os
from dotenv import load_dotenv

load_dotenv()

DATABASE_URL = os.getenv("DATABASE_URL", "postgresql://localhost/webtoon_reader")
# Empty string disables the schema (SQLite has none)
DB_SCHEMA = os.getenv("DB_SCHEMA", "webtoon_reader") or None
DB_ECHO = os.getenv("DB_ECHO", "false").lower() in ("1", "true", "yes")

AWS_ACCESS_KEY_ID = os.getenv("AWS_ACCESS_KEY_ID")
AWS_SECRET_ACCESS_KEY = os.getenv("AWS_SECRET_ACCESS_KEY")
AWS_REGION = os.getenv("AWS_REGION", "us-east-1")
AWS_BUCKET_NAME = os.getenv("AWS_BUCKET_NAME", "webtoon-images")
S3_ENDPOINT_URL = os.getenv("S3_ENDPOINT_URL") or None

WEBTOON_IMAGES_BUCKET = os.getenv("WEBTOON_IMAGES_BUCKET", AWS_BUCKET_NAME)

MEDIA_CDN_BASE = os.getenv("MEDIA_CDN_BASE", "")

SIGNED_PAGE_URLS = os.getenv("SIGNED_PAGE_URLS", "false").lower() in ("1", "true", "yes")
SIGNED_URL_TTL = int(os.getenv("SIGNED_URL_TTL", "3600"))

SECRET_KEY = os.getenv("SECRET_KEY")
ALGORITHM = os.getenv("ALGORITHM", "HS256")
ACCESS_TOKEN_EXPIRE_MINUTES = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "4320"))  # 3 days

MAX_CONCURRENT_PAGE_UPLOADS = int(os.getenv("MAX_CONCURRENT_PAGE_UPLOADS", "3"))
NAVIGATION_SCAN_BATCH = int(os.getenv("NAVIGATION_SCAN_BATCH", "10"))
LATEST_CHAPTERS_LIMIT = int(os.getenv("LATEST_CHAPTERS_LIMIT", "4"))
UNREAD_NOTIFICATIONS_LIMIT = int(os.getenv("UNREAD_NOTIFICATIONS_LIMIT", "10"))

PAGE_IMAGE_MAX_BYTES = int(os.getenv("PAGE_IMAGE_MAX_BYTES", str(20 * 1024 * 1024)))
ALLOWED_IMAGE_MIMES = {"image/png", "image/jpeg", "image/webp"}

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

CORS_ORIGINS = [
    o.strip()
    for o in os.getenv("CORS_ORIGINS", "*").split(",")
    if o.strip()
]

AUTH_RATE_LIMIT = os.getenv("AUTH_RATE_LIMIT", "5/minute")

# Core roles: always present, never editable or deletable
ADMIN_ROLE = "admin"
USER_ROLE = "user"
RESERVED_ROLES = frozenset({ADMIN_ROLE, USER_ROLE})
