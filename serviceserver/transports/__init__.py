"""
Service server implementations for HTTP frameworks.

Each module wraps one framework behind ServiceServerBase and is registered
in the serviceserver.types entry point namespace:

- flask: Flask, served by werkzeug (FlaskServiceServer)
- fastapi: FastAPI, served by uvicorn (FastAPIServiceServer)
- aiohttp: aiohttp.web (AiohttpServiceServer)

The modules are imported on demand so that only the frameworks in use need
to be installed.
"""
