"""ASGI entry point: ``uvicorn genbatch.main:app``."""

from genbatch.core.app_factory import create_app
from genbatch.core.config import load_settings

app = create_app(load_settings())
