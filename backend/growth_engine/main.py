import logging

from dotenv import load_dotenv
from fastapi import FastAPI

# Load environment variables before settings are read
load_dotenv()

from growth_engine.config import LOG_LEVEL  # noqa: E402
from growth_engine.routes_report import router as report_router  # noqa: E402

# Logging setup (structured-ish JSON)
logging.basicConfig(
    level=getattr(logging, LOG_LEVEL, logging.INFO),
    format='{"time":"%(asctime)s","level":"%(levelname)s","message":"%(message)s","module":"%(name)s"}',
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Growth Report Engine")
app.include_router(report_router)


@app.get("/")
def read_root():
    return {"message": "Growth Report Engine"}
