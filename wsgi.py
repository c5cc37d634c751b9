"""
Server entry point
"""
from dispatch.main import app

# ASGI application entry point
application = app

# For local testing
if __name__ == "__main__":
    import uvicorn
    from dispatch.config import settings
    uvicorn.run(
        app,
        host=settings.HOST,
        port=settings.PORT,
        log_level="info" if not settings.DEBUG else "debug"
    )
