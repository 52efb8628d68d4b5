"""hack-helper — AI-powered hackathon project generator."""

__version__ = "0.1.0"

from hackhelper.client.api import ApiClient
from hackhelper.core.errors import InitiationError

__all__ = ["ApiClient", "InitiationError", "__version__"]
