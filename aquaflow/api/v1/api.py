from fastapi import APIRouter
from aquaflow.api.v1.routes.data import router as data_router

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(data_router)
