import uvicorn

from inbox_guard.core.app_factory import create_app

app = create_app()


def run() -> None:
    """Serve the API with uvicorn (``inbox-guard`` console script)."""
    uvicorn.run(
        "inbox_guard.main:app",
        host="0.0.0.0",
        port=8000,
        log_config=None,
    )
