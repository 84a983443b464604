"""Payment provider webhook routes.

Both endpoints read the byte-exact body before any parsing; signature
verification depends on it.
"""

from dishka.integrations.fastapi import DishkaRoute, FromDishka
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from plexdonate.application.error import (
    EventRejectedError,
    LockTimeoutError,
    StoreError,
)
from plexdonate.application.usecase.webhook import (
    PayPalWebhookRequest,
    PayPalWebhookUseCase,
    StripeWebhookRequest,
    StripeWebhookUseCase,
    WebhookResponse,
)
from plexdonate.interface.error import webhook_error_status

router = APIRouter(tags=["webhooks"], route_class=DishkaRoute)

WebhookError = (EventRejectedError, LockTimeoutError, StoreError)


def _error_response(error: Exception) -> JSONResponse:
    headers = {"Retry-After": "60"} if isinstance(error, LockTimeoutError) else None
    return JSONResponse(
        {"error": str(error)},
        status_code=webhook_error_status(error),
        headers=headers,
    )


def _acknowledge(result: WebhookResponse) -> JSONResponse:
    return JSONResponse(result.model_dump())


@router.post("/webhook/paypal")
@router.post("/api/paypal/webhook", include_in_schema=False)
async def paypal_webhook(
    request: Request,
    use_case: FromDishka[PayPalWebhookUseCase],
) -> JSONResponse:
    """Receive a PayPal webhook delivery.

    Returns:
        200 ``{"received": true}`` once verified and reconciled; 400 on a
        parse or verification failure; 503 on lock timeout; 500 if the
        store failed
    """
    body = await request.body()
    try:
        result = await use_case.execute(
            PayPalWebhookRequest(headers=dict(request.headers), body=body)
        )
    except WebhookError as e:
        return _error_response(e)
    return _acknowledge(result)


@router.post("/webhook/stripe")
@router.post("/api/stripe/webhook", include_in_schema=False)
async def stripe_webhook(
    request: Request,
    use_case: FromDishka[StripeWebhookUseCase],
) -> JSONResponse:
    """Receive a Stripe webhook delivery.

    Returns:
        Same status mapping as the PayPal endpoint
    """
    body = await request.body()
    try:
        result = await use_case.execute(
            StripeWebhookRequest(
                signature=request.headers.get("stripe-signature"), body=body
            )
        )
    except WebhookError as e:
        return _error_response(e)
    return _acknowledge(result)
