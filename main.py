from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
import logging
import os
from dotenv import load_dotenv

from db import init_db
from outcomes.routes import router as outcomes_router

load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s - %(message)s",
)
logging.info("App starting with DATABASE_URL")

app = FastAPI(title="Outcome Scores")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

init_db()

app.include_router(outcomes_router)


@app.get("/health", tags=["meta"], summary="Health check")
def health():
    return {"status": "ok"}
