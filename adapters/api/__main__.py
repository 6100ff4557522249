"""Run the API server: ``python -m adapters.api``."""

import uvicorn

from core.config import get_config, validate_config


def main() -> None:
    validate_config()
    config = get_config()
    uvicorn.run(
        "adapters.api.app:create_app",
        factory=True,
        host=config.api.host,
        port=config.api.port,
        reload=config.api.reload,
        log_config=None,  # structlog owns logging
    )


if __name__ == "__main__":
    main()
