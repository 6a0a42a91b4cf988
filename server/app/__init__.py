"""Persona realtime voice relay.

Importing the package loads ``.env`` files so configuration is in place before
``app.config`` reads the environment.
"""
from __future__ import annotations

from pathlib import Path

from dotenv import load_dotenv


_ROOT_DIR = Path(__file__).resolve().parent.parent

# Base env first, then .env.local overrides for developer-specific tweaks.
load_dotenv(_ROOT_DIR / ".env")
load_dotenv(_ROOT_DIR / ".env.local", override=True)
