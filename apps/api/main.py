"""Thin API launcher.

This is the uvicorn entrypoint. All application logic lives in the cmms package.
Run with: uvicorn apps.api.main:app --port $PORT

The app instance is created here (not in cmms.app) so tests can import
create_app without every environment variable being configured.
"""

from cmms.app import add_request_id_middleware, create_app

app = create_app()
# Add request-id middleware LAST so it runs FIRST (outermost)
add_request_id_middleware(app)

__all__ = ["app"]
