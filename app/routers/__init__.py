"""
API routers package
"""

from app.routers.appointments import router as appointments_router
from app.routers.outbox import router as outbox_router
