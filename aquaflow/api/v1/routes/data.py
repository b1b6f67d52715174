import json
import logging

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from aquaflow.api.deps import get_store
from aquaflow.core.errors import LockTimeout
from aquaflow.schemas.wire import BulkOut, Envelope, MutationOut
from aquaflow.services.upsert_store import RemoteUpsertStore

logger = logging.getLogger(__name__)

router = APIRouter(tags=["data"])


def _error(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=MutationOut(status="error", message=message).model_dump())


async def read_envelope(request: Request) -> Envelope | None:
    # Browser clients post text/plain to skip CORS preflight, so parse the raw body.
    raw = await request.body()
    try:
        data = json.loads(raw or b"null")
    except (json.JSONDecodeError, UnicodeDecodeError):
        return None
    if not isinstance(data, dict):
        return None
    payload = data.get("payload")
    return Envelope(dataType=str(data.get("dataType") or ""), payload=payload if isinstance(payload, dict) else None)


@router.get("/data", response_model=BulkOut)
def fetch_all(store: RemoteUpsertStore = Depends(get_store)):
    try:
        return BulkOut(status="success", **store.fetch_all())
    except Exception as e:
        logger.exception("bulk fetch failed")
        return _error(500, str(e))


@router.post("/data", response_model=MutationOut)
def save(envelope: Envelope | None = Depends(read_envelope), store: RemoteUpsertStore = Depends(get_store)):
    if envelope is None:
        return _error(400, "Request body must be a JSON object.")
    if not envelope.dataType or envelope.payload is None:
        return _error(400, "Missing 'dataType' or 'payload' in POST request.")
    try:
        message = store.save(envelope.dataType, envelope.payload)
    except LockTimeout as e:
        logger.warning("write %s rejected: %s", envelope.dataType, e)
        return _error(503, str(e))
    except ValueError as e:
        logger.warning("write %s rejected: %s", envelope.dataType, e)
        return _error(400, str(e))
    except Exception as e:
        logger.exception("write %s failed", envelope.dataType)
        return _error(500, str(e))
    return MutationOut(status="success", message=message)
