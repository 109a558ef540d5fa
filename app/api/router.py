from fastapi import APIRouter
from app.modules.appointments.router import router as appointments_router
from app.modules.payments.router import router as payments_router
from app.modules.schedules.router import router as schedules_router

api_router = APIRouter()
api_router.include_router(appointments_router, tags=["appointments"])
api_router.include_router(payments_router, tags=["payments"])
api_router.include_router(schedules_router, tags=["schedules"])

@api_router.get("/health", tags=["health"])
async def health():
    return {"status": "ok"}
