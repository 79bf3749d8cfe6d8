import os
from dotenv import load_dotenv


dotenv_path_explicit = os.path.join(os.path.dirname(__file__), '..', '.env')
if os.path.exists(dotenv_path_explicit):
    load_dotenv(dotenv_path=dotenv_path_explicit)
else:
    load_dotenv() # Fallback

# --- Storage ---
DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///fashionmuse.db")

# --- External image-edit endpoint ---
IMAGE_EDIT_API_URL = os.getenv("IMAGE_EDIT_API_URL", "https://toolkit.rork.com/images/edit/")
IMAGE_EDIT_TIMEOUT_SECONDS = float(os.getenv("IMAGE_EDIT_TIMEOUT_SECONDS", "180"))
IMAGE_EDIT_MAX_RETRIES = int(os.getenv("IMAGE_EDIT_MAX_RETRIES", "2"))
IMAGE_EDIT_BACKOFF_SECONDS = float(os.getenv("IMAGE_EDIT_BACKOFF_SECONDS", "2"))
MAX_IMAGE_BYTES = int(os.getenv("MAX_IMAGE_BYTES", str(4 * 1024 * 1024)))

# --- Credits & generation ---
SIGNUP_CREDITS = int(os.getenv("SIGNUP_CREDITS", "10"))
GENERATION_PARALLELISM = int(os.getenv("GENERATION_PARALLELISM", "1"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
