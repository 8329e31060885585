"""Configuration settings for the File Transfer Service."""
import os

# Storage limits
MAX_FILE_SIZE = int(os.getenv("MAX_FILE_SIZE", 100 * 1024 * 1024))  # 100MB
# Room for multipart boundaries and part headers on top of the file itself
MULTIPART_OVERHEAD = 64 * 1024
CHUNK_SIZE = int(os.getenv("CHUNK_SIZE", 8192))

# File ID constraints
MAX_ID_LENGTH = 64
ID_SEPARATOR = "_"  # must never appear in a generated ID


def clamp_id_length(length: int) -> int:
    """Keep generated IDs within what the download route accepts."""
    return max(1, min(length, MAX_ID_LENGTH))


ID_LENGTH = clamp_id_length(int(os.getenv("ID_LENGTH", 12)))

# Directory paths
UPLOAD_DIR = os.getenv("UPLOAD_DIR", "./uploads")
TEMP_DIR = os.getenv("TEMP_DIR", os.path.join(UPLOAD_DIR, ".partial"))
LOGS_DIR = os.getenv("LOGS_DIR", "logs")

# Server
HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 8080))
