import asyncio
import logging
from datetime import date, datetime, timezone
from typing import Any, Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from fastapi import APIRouter, Depends, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy.orm import sessionmaker

from fitchat.core.context_builder import build_context_digest, build_injury_context, build_mood_context
from fitchat.core.prompts import PROMPT_VERSION, build_messages, compose_system_prompt
from fitchat.core.tools import ToolArgumentError, parse_tool_arguments, tool_catalog
from fitchat.db.session import get_session_factory
from fitchat.services.dispatcher import ToolDispatcher
from fitchat.services.llm import (
    ChatCompletion,
    CreditsDepletedError,
    LLMClient,
    LLMRequestError,
    RateLimitedError,
    get_llm_client,
)
from fitchat.services.storage import ObjectStorage, get_object_storage

router = APIRouter(tags=["fitness-chat"])
logger = logging.getLogger("uvicorn.error")

CONNECTION_FALLBACK = "I'm having trouble connecting right now. Please try again in a moment!"
TOOL_FALLBACK = "Sorry, I couldn't complete that action. Could you rephrase?"
EMPTY_ANSWER_FALLBACK = "I'm not sure how to help with that yet. Could you tell me a bit more?"
RATE_LIMIT_ERROR = "Rate limit exceeded. Please try again in a moment."
CREDITS_ERROR = "AI credits depleted. Please add credits to continue."
INVALID_REQUEST_ERROR = "Invalid request body"

CORS_ALLOWED_HEADERS = "authorization, x-client-info, apikey, content-type"
CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": CORS_ALLOWED_HEADERS,
    "Access-Control-Allow-Methods": "POST, OPTIONS",
}


class ConversationTurn(BaseModel):
    type: str = "user"
    content: str = ""


class PageContext(BaseModel):
    currentPage: Optional[str] = None
    description: Optional[str] = None
    route: Optional[str] = None
    visibleContent: Optional[Any] = None


class FitnessChatRequest(BaseModel):
    message: Optional[str] = None
    avatarName: Optional[str] = None
    conversationHistory: list[ConversationTurn] = Field(default_factory=list)
    userId: Optional[str] = None
    includeInjuryContext: bool = False
    includeMoodContext: bool = False
    pageContext: Optional[PageContext] = None
    requestId: Optional[str] = None
    timeZone: Optional[str] = None


class FitnessChatResponse(BaseModel):
    response: str
    action: Optional[dict[str, Any]] = None
    timestamp: str


class FitnessChatError(BaseModel):
    error: str
    response: Optional[str] = None


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def local_today(tz_name: Optional[str]) -> date:
    """Calendar date in the caller's IANA time zone; UTC when absent or unknown."""
    name = (tz_name or "").strip()
    if name:
        try:
            return datetime.now(ZoneInfo(name)).date()
        except (ZoneInfoNotFoundError, ValueError):
            logger.info("fitness_chat_unknown_time_zone time_zone=%s", name[:64])
    return datetime.now(timezone.utc).date()


def chat_response(text: str, action: Optional[dict[str, Any]] = None) -> JSONResponse:
    body = FitnessChatResponse(response=text, action=action, timestamp=_now_iso())
    return JSONResponse(
        status_code=status.HTTP_200_OK, content=body.model_dump(exclude_none=True), headers=CORS_HEADERS
    )


def error_response(status_code: int, error: str, fallback: Optional[str] = None) -> JSONResponse:
    body = FitnessChatError(error=error, response=fallback)
    return JSONResponse(status_code=status_code, content=body.model_dump(exclude_none=True), headers=CORS_HEADERS)


async def _gather_context(
    session_factory: sessionmaker, user_id: str, payload: FitnessChatRequest, today: date
) -> tuple[Any, Optional[str], Optional[str]]:
    async def _skip() -> None:
        return None

    digest, injury_text, mood_text = await asyncio.gather(
        build_context_digest(session_factory, user_id, today),
        build_injury_context(session_factory, user_id, today) if payload.includeInjuryContext else _skip(),
        build_mood_context(session_factory, user_id, today) if payload.includeMoodContext else _skip(),
    )
    return digest, injury_text, mood_text


async def _request_completion(
    payload: FitnessChatRequest,
    message: str,
    user_id: Optional[str],
    today: date,
    session_factory: sessionmaker,
    llm_client: LLMClient,
) -> ChatCompletion:
    digest = injury_text = mood_text = None
    if user_id:
        digest, injury_text, mood_text = await _gather_context(session_factory, user_id, payload, today)
    system_prompt = compose_system_prompt(
        avatar_name=payload.avatarName,
        digest=digest,
        page_context=payload.pageContext.model_dump() if payload.pageContext else None,
        injury_text=injury_text,
        mood_text=mood_text,
        logging_enabled=user_id is not None,
    )
    history = [turn.model_dump() for turn in payload.conversationHistory]
    messages = build_messages(system_prompt, history, message)
    logger.info(
        "fitness_chat_request user_id=%s prompt_version=%s history_turns=%s prompt_chars=%s",
        user_id,
        PROMPT_VERSION,
        len(messages) - 2,
        len(system_prompt),
    )
    return await llm_client.complete_chat(messages, tools=tool_catalog(logging_enabled=user_id is not None))


@router.options("/fitness-chat", include_in_schema=False)
def fitness_chat_preflight(request: Request) -> Response:
    headers = dict(CORS_HEADERS)
    requested = request.headers.get("access-control-request-headers")
    if requested:
        headers["Access-Control-Allow-Headers"] = requested
    return Response(status_code=status.HTTP_200_OK, headers=headers)


async def invalid_request_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    logger.warning("fitness_chat_invalid_request path=%s errors=%s", request.url.path, len(exc.errors()))
    return error_response(status.HTTP_400_BAD_REQUEST, INVALID_REQUEST_ERROR, CONNECTION_FALLBACK)


@router.post(
    "/fitness-chat",
    response_model=FitnessChatResponse,
    responses={
        400: {"model": FitnessChatError},
        402: {"model": FitnessChatError},
        429: {"model": FitnessChatError},
        500: {"model": FitnessChatError},
    },
)
async def fitness_chat(
    payload: FitnessChatRequest,
    session_factory: sessionmaker = Depends(get_session_factory),
    llm_client: LLMClient = Depends(get_llm_client),
    storage: ObjectStorage = Depends(get_object_storage),
) -> JSONResponse:
    message = (payload.message or "").strip()
    if not message:
        return error_response(status.HTTP_400_BAD_REQUEST, "Message is required", CONNECTION_FALLBACK)
    user_id = (payload.userId or "").strip() or None
    today = local_today(payload.timeZone)

    try:
        completion = await _request_completion(payload, message, user_id, today, session_factory, llm_client)
    except RateLimitedError as exc:
        logger.warning("fitness_chat_rate_limited user_id=%s model=%s", user_id, exc.model)
        return error_response(status.HTTP_429_TOO_MANY_REQUESTS, RATE_LIMIT_ERROR)
    except CreditsDepletedError as exc:
        logger.warning("fitness_chat_credits_depleted user_id=%s model=%s", user_id, exc.model)
        return error_response(status.HTTP_402_PAYMENT_REQUIRED, CREDITS_ERROR)
    except LLMRequestError as exc:
        logger.exception(
            "fitness_chat_llm_error user_id=%s status=%s detail=%s", user_id, exc.status_code, str(exc)
        )
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc), CONNECTION_FALLBACK)
    except Exception as exc:
        logger.exception("fitness_chat_unhandled_error user_id=%s detail=%s", user_id, str(exc))
        return error_response(status.HTTP_500_INTERNAL_SERVER_ERROR, str(exc) or "Internal error", CONNECTION_FALLBACK)

    call = completion.first_tool_call
    if call is None:
        return chat_response(completion.content or EMPTY_ANSWER_FALLBACK)

    if len(completion.tool_calls) > 1:
        logger.info(
            "fitness_chat_extra_tool_calls_ignored user_id=%s tools=%s",
            user_id,
            ",".join(c.name for c in completion.tool_calls[1:]),
        )
    dispatcher = ToolDispatcher(session_factory=session_factory, llm_client=llm_client, storage=storage)
    try:
        args = parse_tool_arguments(call.name, call.arguments)
        result = await dispatcher.dispatch(user_id, args, today=today, request_id=payload.requestId)
    except ToolArgumentError as exc:
        logger.warning("fitness_chat_tool_rejected user_id=%s tool=%s detail=%s", user_id, exc.tool_name, str(exc))
        return chat_response(completion.content or TOOL_FALLBACK)
    except Exception as exc:
        logger.exception("fitness_chat_tool_error user_id=%s tool=%s detail=%s", user_id, call.name, str(exc))
        return chat_response(completion.content or TOOL_FALLBACK)
    return chat_response(result.confirmation, result.action)
