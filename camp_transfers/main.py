import uvicorn

from camp_transfers.api import create_app
from camp_transfers.settings import get_settings

# Create app instance for uvicorn
app = create_app()


def run() -> None:
    settings = get_settings()
    # Logging is already configured by create_app
    uvicorn.run(app, host=settings.host, port=settings.port, log_config=None)


if __name__ == "__main__":
    run()
