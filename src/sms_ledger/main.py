import os

import uvicorn

from sms_ledger.app import create_app
from sms_ledger.core.settings import get_env_int
from sms_ledger.logger import get_logging_config

app = create_app()


def run() -> None:
    uvicorn.run(
        app,
        host=os.getenv("HOST", "0.0.0.0"),
        port=get_env_int("PORT", 8000, min_value=1),
        log_config=get_logging_config(),
    )


if __name__ == "__main__":
    run()
