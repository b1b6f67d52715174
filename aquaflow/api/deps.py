from functools import lru_cache

from aquaflow.db.session import SessionLocal
from aquaflow.services.upsert_store import RemoteUpsertStore
from aquaflow.services.workbook import SqlWorkbook


@lru_cache(maxsize=1)
def get_store() -> RemoteUpsertStore:
    # One store per process: its lock is the single write lock for every request.
    return RemoteUpsertStore(SqlWorkbook(SessionLocal))
