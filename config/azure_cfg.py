import os
from dotenv import load_dotenv

load_dotenv()

# --- Azure Blob Storage Settings ---

# Full connection string, e.g. from the portal or Azurite:
# DefaultEndpointsProtocol=http;AccountName=devstoreaccount1;AccountKey=...;BlobEndpoint=http://127.0.0.1:10000/devstoreaccount1;
AZURE_STORAGE_CONNECTION_STRING = os.getenv("AZURE_STORAGE_CONNECTION_STRING", "")

# Server-side copy (rename) is asynchronous in Azure; poll until it settles
AZURE_COPY_POLL_INTERVAL = float(os.getenv("AZURE_COPY_POLL_INTERVAL", "0.5"))
AZURE_COPY_TIMEOUT = float(os.getenv("AZURE_COPY_TIMEOUT", "300"))
