"""
Configuration Module

This module contains configuration settings for the application.
"""
import os
from pathlib import Path

# Load environment variables from .env file
from dotenv import load_dotenv

# Base directory - one level up from this file
BASE_DIR = Path(__file__).resolve().parent.parent

load_dotenv(BASE_DIR / ".env")

# Local data directory, used by the default SQLite database
DATA_DIR = Path(os.getenv("DATA_DIR", BASE_DIR / "data"))
DATA_DIR.mkdir(exist_ok=True, parents=True)

# Database settings
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{DATA_DIR / 'git_events.db'}")

# GitHub API settings
GITHUB_API_URL = os.getenv("GITHUB_API_URL", "https://api.github.com")
GITHUB_API_TOKEN = os.getenv("GITHUB_API_TOKEN", "")
GITHUB_USERNAME = os.getenv("GITHUB_USERNAME", "")

# GitLab API settings
GITLAB_API_URL = os.getenv("GITLAB_API_URL", "https://gitlab.com/api/v4")
GITLAB_API_TOKEN = os.getenv("GITLAB_API_TOKEN", "")
GITLAB_USER_ID = os.getenv("GITLAB_USER_ID", "")

# Sync settings
SYNC_INTERVAL_SECONDS = int(os.getenv("SYNC_INTERVAL_SECONDS", "60"))
SYNC_MAX_RETRIES = int(os.getenv("SYNC_MAX_RETRIES", "3"))
SYNC_RETRY_BASE_DELAY_SECONDS = float(os.getenv("SYNC_RETRY_BASE_DELAY_SECONDS", "2"))
SYNC_RETRY_MAX_DELAY_SECONDS = float(os.getenv("SYNC_RETRY_MAX_DELAY_SECONDS", "60"))

# HTTP settings
HTTP_TIMEOUT_SECONDS = float(os.getenv("HTTP_TIMEOUT_SECONDS", "30"))
PER_PAGE = int(os.getenv("PER_PAGE", "100"))  # 100 is the max for both APIs
MAX_PAGES_PER_SYNC = int(os.getenv("MAX_PAGES_PER_SYNC", "10"))

# API settings
API_PREFIX = "/api"

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
