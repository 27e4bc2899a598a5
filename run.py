# run.py
import uvicorn
import logging

from firmsync.core.config import settings

settings.load_yaml_config()

logging.basicConfig(
    level=getattr(logging, settings.log_level, logging.INFO),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logging.getLogger("automation").setLevel(logging.DEBUG)

uvicorn.run("firmsync.main:app", host="0.0.0.0", port=8080, reload=False)
