# run.py
import logging
import uvicorn
from fleetdesk.settings import settings

logging.basicConfig(
    level=settings.log_level,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)

uvicorn.run("fleetdesk.main:app", host="0.0.0.0", port=8000, reload=False)
