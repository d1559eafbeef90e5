"""Configuration settings for the File Vault server."""
import os
from pathlib import Path

# Storage limits
CAPACITY_BYTES = 25 * 1024 * 1024 * 1024  # 25GB
CHUNK_SIZE = 8192

# Directory paths, relative to BASE_DIR
BASE_DIR = Path(os.getenv("FILE_VAULT_HOME", "."))
UPLOAD_DIR = "uploads"
TEMP_DIR = "temp"
PUBLIC_DIR = "public"
DATA_FILE = "cloudvault-data.json"
LOGS_DIR = "logs"

# Logging
LOG_FILE = "file_vault.log"
CONSOLE_LOG_LEVEL = os.getenv("FILE_VAULT_LOG_LEVEL", "INFO").upper()

# Server
HOST = "0.0.0.0"
PORT = int(os.getenv("PORT", "3000"))
