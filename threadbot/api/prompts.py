from fastapi import APIRouter, HTTPException, status
from fastapi.responses import JSONResponse

from threadbot.dependencies import CurrentUserId, DBSession, Gateway
from threadbot.schemas.prompts import SendNowRequest, SendNowResponse
from threadbot.services.manual_send import send_prompt_now

router = APIRouter()

STATUS_CODES = {
    "not_linked": status.HTTP_404_NOT_FOUND,
    "no_content": status.HTTP_404_NOT_FOUND,
    "send_failed": status.HTTP_502_BAD_GATEWAY,
}


@router.post("/prompts/send-now", response_model=SendNowResponse)
async def send_now(
    body: SendNowRequest,
    db: DBSession,
    user_id: CurrentUserId,
    gateway: Gateway,
) -> SendNowResponse | JSONResponse:
    """
    Send one prompt to the user's Telegram chat right away.

    Limited to 10 sends per hour per date and slot, at least 30 seconds apart.
    """
    result = await send_prompt_now(db, user_id, body.date, body.slot, gateway)

    if result.rate_limited:
        retry_after = result.retry_after_seconds or 1
        return JSONResponse(
            status_code=status.HTTP_429_TOO_MANY_REQUESTS,
            content=SendNowResponse(
                success=False, message=result.message, retry_after_seconds=retry_after
            ).model_dump(),
            headers={"Retry-After": str(retry_after)},
        )

    if not result.success:
        raise HTTPException(status_code=STATUS_CODES[result.status], detail=result.message)

    return SendNowResponse(success=True, message=result.message)
