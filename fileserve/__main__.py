from __future__ import annotations

import uvicorn

from .config import get_settings
from .log import configure_logging
from .main import create_app


def main() -> None:
    settings = get_settings()
    configure_logging(settings.log_level, json=settings.log_json)

    tls = {}
    if settings.tls_enabled:
        tls = {'ssl_certfile': settings.tls_cert_file, 'ssl_keyfile': settings.tls_key_file}

    uvicorn.run(
        create_app(settings),
        host=settings.app_host,
        port=settings.app_port,
        log_level=settings.log_level,
        **tls,
    )


if __name__ == '__main__':
    main()
