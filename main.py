from fastapi import FastAPI
from dotenv import load_dotenv
import logging
import os

load_dotenv()

from app.routers import api
from app.database import init_db
from app.services.trading_service import trading_service
from app.services.mt5_service import mt5_connector

logging.basicConfig(level=logging.INFO)

app = FastAPI(title="FX Pilot")

app.include_router(api.router, prefix="/api")

@app.on_event("startup")
async def startup_event():
    init_db()
    if os.getenv("BOT_AUTOSTART", "").lower() in ("1", "true", "yes"):
        print("Auto-starting trading bot...")
        trading_service.start()

@app.on_event("shutdown")
async def shutdown_event():
    # In-flight cycle is left to finish, no new ticks after this
    trading_service.stop()
    if mt5_connector.connected:
        mt5_connector.disconnect()

if __name__ == "__main__":
    import uvicorn
    import sys

    if "--autostart" in sys.argv:
        # Read by the reloaded worker process in startup_event
        os.environ["BOT_AUTOSTART"] = "1"
        print("Trading bot will start automatically.")
    else:
        print("Trading bot idle until POST /api/bot/start (default).")

    uvicorn.run("main:app", host="0.0.0.0", port=8000, reload=True)
