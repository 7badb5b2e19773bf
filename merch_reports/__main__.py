import logging

import uvicorn

from merch_reports.config import settings


def main():
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    uvicorn.run("merch_reports.main:app", host=settings.app_host, port=settings.app_port)


if __name__ == "__main__":
    main()
