from __future__ import annotations

from fastapi import APIRouter

from vidvault.api.v1 import public, videos

api_router = APIRouter()
api_router.include_router(videos.router)
api_router.include_router(public.router)
