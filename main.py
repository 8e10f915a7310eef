"""Workflow result processor - Entry point.

Run the HTTP service with:
    uv run python main.py
"""

import os

import uvicorn

from src.app import create_app


def main():
    """Serve the workflow result processor with uvicorn."""
    app = create_app()
    uvicorn.run(
        app,
        host=os.environ.get("HOST", "0.0.0.0"),
        port=int(os.environ.get("PORT", "8000")),
    )


if __name__ == "__main__":
    main()
