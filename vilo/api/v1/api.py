from fastapi import APIRouter
from vilo.api.v1.routes.auth import router as auth_router
from vilo.api.v1.routes.bookings import router as bookings_router
from vilo.api.v1.routes.refunds import router as refunds_router
from vilo.api.v1.routes.admin import router as admin_router
from vilo.api.v1.routes.credit_memos import router as credit_memos_router
from vilo.api.v1.routes.notifications import router as notifications_router

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(auth_router)
api_router.include_router(bookings_router)
api_router.include_router(refunds_router)
api_router.include_router(admin_router)
api_router.include_router(credit_memos_router)
api_router.include_router(notifications_router)
