# esiri/router/routers.py

from fastapi import FastAPI
from esiri.auth.auth_controller import router as auth_router
from esiri.modules.device_binding.device_binding_controller import router as devices_router
from esiri.modules.doctors.doctors_controller import router as doctors_router
from esiri.modules.consultations.consultations_controller import router as consultations_router
from esiri.modules.appointments.appointments_controller import router as appointments_router
from esiri.modules.payments.payments_controller import router as payments_router
from esiri.modules.notifications.notifications_controller import router as notifications_router
from esiri.modules.video.video_controller import router as video_router
from esiri.modules.cron.cron_controller import router as cron_router

def include_routers(app: FastAPI) -> None:
    """Include all API routers in the FastAPI application."""
    app.include_router(auth_router)
    app.include_router(devices_router)
    app.include_router(doctors_router)
    app.include_router(consultations_router)
    app.include_router(appointments_router)
    app.include_router(payments_router)
    app.include_router(notifications_router)
    app.include_router(video_router)
    app.include_router(cron_router)
