"""Run the Gamerz server: ``python -m gamerz``."""
import uvicorn

from gamerz.config import get_config


def main() -> None:
    config = get_config()
    uvicorn.run(
        "gamerz.main:app",
        host=config.server.host,
        port=config.server.port,
        log_level=config.logging.level.lower(),
    )


if __name__ == "__main__":
    main()
