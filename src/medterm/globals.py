import os
from typing import Dict

from fastapi.templating import Jinja2Templates

from .config import settings
from .llm import HostedModelClient
from .models import SessionState
from .vocabulary import TermLibrary

PACKAGE_DIR = os.path.dirname(os.path.abspath(__file__))
TEMPLATE_DIR = os.path.join(PACKAGE_DIR, "templates")
STATIC_DIR = os.path.join(PACKAGE_DIR, "static")

templates = Jinja2Templates(directory=TEMPLATE_DIR)
term_library = TermLibrary(settings.VOCAB_DIR)
sessions: Dict[str, SessionState] = {}
llm_client = HostedModelClient()
