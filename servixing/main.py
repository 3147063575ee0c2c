from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from servixing.core.config import settings
from servixing.core.errors import ServixingError
from servixing.core.log_config import configure_logging
from servixing.api.v1.api import api_router
from servixing.services.rate_limit import build_rate_limiter

configure_logging(settings.LOG_LEVEL)

app = FastAPI(title=settings.APP_NAME)
app.state.rate_limiter = build_rate_limiter(settings)

# CORS: use CORS_ORIGINS from env in production; default to localhost for dev
_default_origins = ["http://127.0.0.1:3000", "http://localhost:3000"]
_origins = [o.strip() for o in settings.CORS_ORIGINS.split(",") if o.strip()] if settings.CORS_ORIGINS else _default_origins
app.add_middleware(
    CORSMiddleware,
    allow_origins=_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ServixingError)
async def servixing_error_handler(request: Request, exc: ServixingError):
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message, "code": exc.code})


app.include_router(api_router)


@app.get("/health")
def health():
    return {"status": "ok"}
