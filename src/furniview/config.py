"""Environment-driven settings for the Furniview backend."""

import os
import shlex
from pathlib import Path

from dotenv import load_dotenv

load_dotenv()

# "supabase" talks to the managed platform; "local" keeps everything under DATA_DIR
BACKEND = os.getenv("FURNIVIEW_BACKEND", "supabase").strip().lower()

SUPABASE_URL = os.getenv("SUPABASE_URL", "")
SUPABASE_ANON_KEY = os.getenv("SUPABASE_ANON_KEY", "")
SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY", "")

DATA_DIR = Path(os.getenv("DATA_DIR", "./data")).resolve()

ORIGINAL_BUCKET = os.getenv("ORIGINAL_BUCKET", "original-files")
GLTF_BUCKET = os.getenv("GLTF_BUCKET", "gltf-files")

MAX_UPLOAD_MB = int(os.getenv("MAX_UPLOAD_MB", "100"))
WORKERS = int(os.getenv("WORKERS", "2"))

ASSIMP_BIN = os.getenv("ASSIMP_BIN", "assimp")
ASSIMP_ARGS = shlex.split(os.getenv("ASSIMP_ARGS", ""))
CONVERSION_TIMEOUT_SEC = int(os.getenv("CONVERSION_TIMEOUT_SEC", "600"))
LOCAL_SESSION_TTL_SEC = int(os.getenv("LOCAL_SESSION_TTL_SEC", "3600"))

CORS_ORIGINS = [
    o.strip()
    for o in os.getenv(
        "CORS_ORIGINS",
        "http://localhost:5173,https://furniview.vercel.app",
    ).split(",")
    if o.strip()
]

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
