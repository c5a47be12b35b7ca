from fastapi import APIRouter
from gateway.api.endpoints import translate

api_router = APIRouter()

# Combine all sub-routers into one
api_router.include_router(translate.router)
