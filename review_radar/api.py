"""
HTTP API — one streaming endpoint plus a health check.

    POST /api/chat   body {"messages": [...]} or {"appStoreIds": [...]}
                     header X-User-Id
                     -> application/x-ndjson, one stream event per line

Anything wrong with the request itself (no user, no app IDs, no access) is
answered with a JSON {"error": ...} and a 4xx status before streaming starts.
Once the stream is open, failures arrive as status:error events and the
response still ends with 200.

Run it with:  uvicorn review_radar.api:app --reload
"""

import logging
from functools import lru_cache
from typing import AsyncIterator, Optional

import uvicorn
from fastapi import Depends, FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, StreamingResponse

from review_radar import config
from review_radar.data_store import AppDataStore
from review_radar.errors import AccessDeniedError
from review_radar.events import encode_frame
from review_radar.llm_client import LLMClient
from review_radar.orchestrator import AnalysisRequest, StreamOrchestrator
from review_radar.schemas import WireModel

config.configure_logging()
logger = logging.getLogger(__name__)

app = FastAPI(title="Review Radar API", version="0.1.0")


class ChatMessage(WireModel):
    role: str
    content: str = ""


class ChatRequest(WireModel):
    messages: Optional[list[ChatMessage]] = None
    app_store_ids: Optional[list[str]] = None


@lru_cache
def get_store() -> AppDataStore:
    return AppDataStore()


@lru_cache
def get_llm() -> LLMClient:
    return LLMClient()


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": message})


@app.exception_handler(RequestValidationError)
async def invalid_request(request: Request, exc: RequestValidationError):
    return error_response(400, "Invalid request body")


async def ndjson(events: AsyncIterator[dict]) -> AsyncIterator[str]:
    async for event in events:
        yield encode_frame(event)


@app.get("/api/healthcheck")
def healthcheck():
    return {"status": "ok"}


@app.post("/api/chat")
async def chat(req: ChatRequest,
               x_user_id: Optional[str] = Header(default=None),
               store: AppDataStore = Depends(get_store),
               llm: LLMClient = Depends(get_llm)):
    if not x_user_id:
        return error_response(401, "Unauthorized")

    try:
        if req.app_store_ids:
            # Creation flow: asking for an analysis is what grants access to it
            request = AnalysisRequest.from_app_ids(req.app_store_ids)
            if not request.new_identifiers:
                return error_response(400, "No app IDs provided")
            app_ids = request.all_app_ids
            await store.grant_access(x_user_id, app_ids, f"Analysis of {', '.join(app_ids)}")
        elif req.messages:
            latest = req.messages[-1]
            if latest.role != "user" or not latest.content.strip():
                return error_response(400, "The last message must be a non-empty user message")
            request = AnalysisRequest.from_messages([m.model_dump() for m in req.messages])
            if not request.new_identifiers:
                return error_response(400, "No app IDs found in the latest message")
            denied = await store.denied_app_ids(x_user_id, request.all_app_ids)
            if denied:
                return error_response(403, str(AccessDeniedError(denied)))
        else:
            return error_response(400, "Provide either messages or appStoreIds")
    except Exception:
        logger.exception("Could not start analysis")
        return error_response(500, "Internal server error")

    logger.info("Starting analysis of %s for user %s", ", ".join(request.all_app_ids), x_user_id)
    orchestrator = StreamOrchestrator(store, llm)
    return StreamingResponse(
        ndjson(orchestrator.stream(request, x_user_id)),
        media_type="application/x-ndjson",
    )


if __name__ == "__main__":
    uvicorn.run(app, host="0.0.0.0", port=8000)
