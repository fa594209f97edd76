"""Run the server with ``python -m parley``."""
import uvicorn

from parley.config import get_config


def main() -> None:
    server = get_config().server
    uvicorn.run("parley.main:app", host=server.host, port=server.port, log_level=server.log_level)


if __name__ == "__main__":
    main()
