import sys

import uvicorn

from .config import Settings
from .errors import ConfigError
from .server import create_app


def main() -> None:
    try:
        settings = Settings.from_env()
    except ConfigError as e:
        print(f"ticketdesk: {e}", file=sys.stderr)
        sys.exit(1)
    uvicorn.run(create_app(settings), host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    main()
