"""ASGI entry point: uvicorn intakebot.api.app:app"""

from .factory import create_app

app = create_app()
