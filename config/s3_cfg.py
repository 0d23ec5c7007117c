import os
from dotenv import load_dotenv

load_dotenv()

# --- S3 Connection Settings ---

# Endpoint URL (Required for Ceph/MinIO)
# For real AWS, leave empty or specific URL.
S3_ENDPOINT_URL = os.getenv("S3_ENDPOINT_URL", "http://127.0.0.1:9000") or None

# Credentials
S3_ACCESS_KEY_ID = os.getenv("S3_ACCESS_KEY_ID", "admin")
S3_SECRET_ACCESS_KEY = os.getenv("S3_SECRET_ACCESS_KEY", "SECRET")

# Region. For MinIO/Ceph usually "us-east-1"
S3_REGION_NAME = os.getenv("S3_REGION_NAME", "us-east-1")

# Chunk size for reading object bodies
CHUNK_SIZE = 1024 * 1024
