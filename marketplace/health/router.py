from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from marketplace.infra.redis_client import redis_health_info
from marketplace.utils.rate_limit import rate_limit_health_info

router = APIRouter(prefix="/health", tags=["Health"])

@router.get("")
def health_root():
    return {"ok": True}

@router.get("/redis")
def health_redis(request: Request):
    info = redis_health_info()
    info["rate_limit"] = rate_limit_health_info(request)
    return JSONResponse(info, status_code=200 if info.get("connect_ok") else 503)
