"""FastAPI application exposing the negotiation endpoint."""
import logging
from functools import lru_cache

from fastapi import Depends, FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware

from config import get_log_level
from negotiation import (
    ConfigurationError,
    NegotiationAgent,
    ProcessRequest,
    ProcessResponse,
    build_agent_from_config,
)

logging.basicConfig(
    level=get_log_level(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)

app = FastAPI(title="Supplier Negotiation Agent")

logger = logging.getLogger(__name__)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@lru_cache(maxsize=None)
def get_agent() -> NegotiationAgent:
    """Build the agent once, on first use."""
    return build_agent_from_config()


def _agent_dependency() -> NegotiationAgent:
    try:
        return get_agent()
    except ConfigurationError as exc:
        logger.error("Negotiation agent is misconfigured: %s", exc)
        raise HTTPException(status_code=500, detail=str(exc)) from exc


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok"}


@app.post("/api/negotiation/process", response_model=ProcessResponse)
async def process_supplier_message(
    req: ProcessRequest,
    agent: NegotiationAgent = Depends(_agent_dependency),
) -> ProcessResponse:
    """Decide accept / counter / escalate / clarify for one supplier message."""
    if not req.supplier_message.strip():
        raise HTTPException(status_code=400, detail="supplier_message is required")

    try:
        return await agent.process(req)
    except ConfigurationError as exc:
        logger.error("Configuration error while processing turn: %s", exc)
        raise HTTPException(status_code=500, detail=str(exc)) from exc
    except Exception as exc:  # pragma: no cover - unexpected failures
        logger.exception("Failed to process supplier message")
        raise HTTPException(status_code=500, detail="Failed to process supplier message") from exc


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host="0.0.0.0", port=8000)
