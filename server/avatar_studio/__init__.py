"""Coach avatar studio: generative image pipeline and its HTTP surface."""
from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

__version__ = "0.1.0"

# Credentials live next to ``server/`` unless AVATAR_STUDIO_ENV_DIR points elsewhere.
_ENV_DIR = Path(os.getenv("AVATAR_STUDIO_ENV_DIR") or Path(__file__).resolve().parent.parent)

for _name, _override in ((".env", False), (".env.local", True)):
    load_dotenv(_ENV_DIR / _name, override=_override)
