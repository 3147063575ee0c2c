from fastapi import APIRouter, Depends, Request
from starlette.concurrency import run_in_threadpool
from sqlalchemy.orm import Session

from servixing.db.session import get_db
from servixing.services.providers import get_adapter
from servixing.services.reconciliation_service import handle_webhook

router = APIRouter(tags=["webhooks"])


@router.post("/webhooks/{provider}")
async def payment_webhook(provider: str, req: Request, db: Session = Depends(get_db)):
    """Gateway callbacks. Always 200 so gateways do not retry; outcomes go to the logs and audit trail."""
    body = await req.body()
    try:
        signature = req.headers.get(get_adapter(provider).signature_header, "")
    except ValueError:
        signature = ""
    await run_in_threadpool(handle_webhook, db, provider, body, signature)
    return {"received": True}
