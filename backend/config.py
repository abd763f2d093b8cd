"""Application configuration."""

import os
from pathlib import Path

# Base directories
BASE_DIR = Path(__file__).resolve().parent
STORAGE_DIR = Path(os.getenv("ZPL_STORAGE_DIR", str(BASE_DIR / "storage")))
UPLOADS_DIR = STORAGE_DIR / "uploads"
OUTPUTS_DIR = STORAGE_DIR / "pdfs"
DATABASE_PATH = Path(os.getenv("ZPL_DATABASE_PATH", str(BASE_DIR / "database.db")))

# Ensure directories exist
for d in [UPLOADS_DIR, OUTPUTS_DIR]:
    d.mkdir(parents=True, exist_ok=True)

# Server settings
HOST = "0.0.0.0"
PORT = 8000
CORS_ORIGINS = ["http://localhost:5173", "http://127.0.0.1:5173"]
PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", f"http://localhost:{PORT}")

# Label rendering API (Labelary-compatible)
LABEL_API_URL = os.getenv("LABEL_API_URL", "https://api.labelary.com/v1/printers")
LABEL_DPMM = int(os.getenv("LABEL_DPMM", "8"))  # 6, 8, 12 or 24 dots per mm
LABEL_SIZE = os.getenv("LABEL_SIZE", "4x6")  # inches
REQUEST_TIMEOUT = 60  # seconds
MIN_PDF_BYTES = 500  # smaller responses are treated as broken PDFs

# URL shorteners, tried in order
SHORTENER_URLS = [
    "https://is.gd/create.php",
    "https://tinyurl.com/api-create.php",
]

# Upload limits
MAX_UPLOAD_SIZE = 20 * 1024 * 1024  # bytes
ALLOWED_EXTENSIONS = {".zpl", ".txt", ".prn", ".zip"}

# Sharing
SHARE_DEFAULT_EXPIRES_HOURS = 24

# Worker settings
WORKER_POLL_INTERVAL = 2  # seconds between job checks
