from fastapi import APIRouter, BackgroundTasks, Depends, Header, Query, Request
from fastapi.responses import RedirectResponse
from sqlmodel import Session

from app.api.deps import get_current_user_id
from app.core.database import get_db
from app.schemas.payment import CheckoutRequest, CheckoutResponse, PaymentConfigResponse, WebhookAck
from app.services import payments as payment_service
from app.services.fulfillment import drain_queue

router = APIRouter(prefix="/api/payments", tags=["payments"])


@router.get("/config", response_model=PaymentConfigResponse)
def payment_config():
    return payment_service.payment_config()


@router.post("/checkout", response_model=CheckoutResponse)
def checkout(
    body: CheckoutRequest,
    user_id: int = Depends(get_current_user_id),
    db: Session = Depends(get_db),
):
    payment, redirect_url = payment_service.start_checkout(
        db, body.order_id, user_id, provider=body.provider, return_url=body.return_url
    )
    return CheckoutResponse(
        payment_id=payment.id,
        order_id=payment.order_id,
        provider=payment.provider,
        checkout_id=payment.provider_ref,
        redirect_url=redirect_url,
        amount=payment.amount,
        currency=payment.currency,
    )


async def _webhook(
    provider: str,
    request: Request,
    background_tasks: BackgroundTasks,
    signature: str | None,
    db: Session,
) -> WebhookAck:
    body = await request.body()
    ack, became_paid = payment_service.handle_webhook(db, provider, body, signature)
    if became_paid:
        background_tasks.add_task(drain_queue)
    return WebhookAck(**ack)


@router.post("/hyperpay/webhook", response_model=WebhookAck)
async def hyperpay_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    x_signature: str | None = Header(None, alias="X-Signature"),
    db: Session = Depends(get_db),
):
    return await _webhook(payment_service.HYPERPAY, request, background_tasks, x_signature, db)


@router.post("/clickpay/webhook", response_model=WebhookAck)
async def clickpay_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    x_signature: str | None = Header(None, alias="X-Signature"),
    db: Session = Depends(get_db),
):
    return await _webhook(payment_service.CLICKPAY, request, background_tasks, x_signature, db)


@router.post("/webhook", response_model=WebhookAck)
async def legacy_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    x_signature: str | None = Header(None, alias="X-Signature"),
    db: Session = Depends(get_db),
):
    """Older gateway configuration still posts HyperPay notifications here."""
    return await _webhook(payment_service.HYPERPAY, request, background_tasks, x_signature, db)


@router.get("/return")
def payment_return(order_id: int = Query(..., alias="order_id"), status: str | None = Query(None)):
    return RedirectResponse(url=payment_service.return_redirect_url(order_id, status), status_code=302)
