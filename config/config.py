import os
from dotenv import load_dotenv

# Load .env automatically (looks in current dir and parents)
load_dotenv()

def get_env_bool(key: str, default: bool = False) -> bool:
    val = os.getenv(key, str(default)).lower()
    return val in ('true', '1', 'yes', 'on')

# Client driver: "azure", "s3" or "fs" (local block-blob emulation)
DRIVER_KIND = os.getenv("DRIVER_KIND", "fs")

# Container (Azure) / bucket (S3) / top dir under the fs root
STORAGE_CONTAINER = os.getenv("STORAGE_CONTAINER", "blobstore")

# Optional key namespace. Empty means keys are the paths themselves.
STORAGE_PREFIX = os.getenv("STORAGE_PREFIX", "").strip("/")

# Block size for chunked uploads (5MB is also the S3 minimum part size)
STORAGE_CHUNK_SIZE = int(os.getenv("STORAGE_CHUNK_SIZE", str(5 * 1024 * 1024)))

# Lower-case and sanitize keys before they reach the store
STORAGE_SLUG_KEYS = get_env_bool("STORAGE_SLUG_KEYS", True)
STORAGE_SLUG_SEPARATOR = os.getenv("STORAGE_SLUG_SEPARATOR", "_")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

VERSION = os.getenv("VERSION", "1.0.0")
