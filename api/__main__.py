import os

import uvicorn

from smartqueue.config_loader import Config


def main() -> None:
    """Run the API with auto-reload for local development."""
    config = Config(os.getenv("SMARTQUEUE_CONFIG_PATH"))
    uvicorn.run(
        "api.main:app",
        host=config.api_host,
        port=config.api_port,
        reload=True,
    )


if __name__ == "__main__":
    main()
