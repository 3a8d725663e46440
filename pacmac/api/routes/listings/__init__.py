from fastapi import APIRouter

from .auction import router as auction_router
from .base import router as crud_router

router = APIRouter(prefix="/listings", tags=["Listings"])
router.include_router(
    crud_router,
)
router.include_router(
    auction_router,
)
