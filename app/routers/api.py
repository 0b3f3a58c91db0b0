from typing import Optional

from fastapi import APIRouter, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from app.database import get_config, save_config
from app.services.decision_service import DecisionServiceError, MissingCredentialsError
from app.services.mt5_service import mt5_connector
from app.services.trading_service import CycleInProgressError, trading_service

router = APIRouter()


class ConfigRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    gemini_api_key: str = Field(alias="geminiApiKey", min_length=1)
    mt5_server: str = Field(default="", alias="mt5Server")
    mt5_login: str = Field(default="", alias="mt5Login")
    mt5_password: str = Field(default="", alias="mt5Password")


def _mask(secret: str) -> str:
    if not secret:
        return ""
    return "*" * max(len(secret) - 4, 4) + secret[-4:]


@router.get("/status")
def get_status():
    return trading_service.status()


@router.post("/bot/start")
async def start_bot():
    config = get_config()
    if not config or not config.get("geminiApiKey"):
        raise HTTPException(status_code=400, detail="Gemini API key is required")
    started = trading_service.start()
    return {"running": trading_service.is_running, "changed": started}


@router.post("/bot/stop")
async def stop_bot():
    stopped = trading_service.stop()
    return {"running": trading_service.is_running, "changed": stopped}


@router.post("/bot/toggle")
async def toggle_bot():
    if not trading_service.is_running:
        return await start_bot()
    return await stop_bot()


@router.post("/cycle")
async def run_cycle():
    try:
        decision = await trading_service.run_cycle()
    except MissingCredentialsError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except DecisionServiceError as e:
        raise HTTPException(status_code=502, detail=f"Failed to process trading request: {e}")
    except CycleInProgressError as e:
        raise HTTPException(status_code=409, detail=str(e))
    return {"decision": decision.to_dict(), "status": trading_service.status()}


@router.get("/trades")
def get_trades(status: Optional[str] = None):
    trades = trading_service.ledger.trades
    if status:
        trades = [t for t in trades if t.status == status.upper()]
    return [t.to_dict() for t in trades]


@router.get("/market")
def get_market():
    return [q.to_dict() for q in trading_service.last_snapshot]


@router.get("/config")
def read_config():
    config = get_config()
    if not config:
        return {"configured": False}
    return {
        "configured": bool(config.get("geminiApiKey")),
        "geminiApiKey": _mask(config.get("geminiApiKey", "")),
        "mt5Server": config.get("mt5Server", ""),
        "mt5Login": config.get("mt5Login", ""),
        "mt5Password": _mask(config.get("mt5Password", "")),
    }


@router.post("/config")
def write_config(request: ConfigRequest):
    save_config(request.model_dump(by_alias=True))
    return {"message": "Configuration saved", "configured": True}


@router.post("/broker/connect")
def connect_broker():
    config = get_config()
    if not config:
        raise HTTPException(status_code=400, detail="Save a configuration first")
    connected = mt5_connector.connect(config)
    return {"connected": connected, "balance": mt5_connector.get_balance()}


@router.get("/broker/status")
def broker_status():
    if not mt5_connector.connected:
        return {"connected": False}
    return {
        "connected": True,
        "server": mt5_connector.config.get("mt5Server", ""),
        "balance": mt5_connector.get_balance(),
    }
