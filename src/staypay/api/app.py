"""ASGI entry point (uvicorn staypay.api.app:app). Role comes from APP_ROLE."""

from staypay.api.factory import create_app

app = create_app()
