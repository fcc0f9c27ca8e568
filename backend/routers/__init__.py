from .payments import router as payments_router
from .projects import router as projects_router
from .members import router as members_router
from .logs import router as logs_router
from .me import router as me_router

__all__ = [
    'payments_router',
    'projects_router',
    'members_router',
    'logs_router',
    'me_router',
]
