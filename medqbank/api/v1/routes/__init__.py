from fastapi import APIRouter
from medqbank.api.v1.routes import auth
from .users import router as users_router
from .content import router as content_router
from .sessions import router as sessions_router
from .validation import router as validation_router
from .questions import router as questions_router
from .ai_jobs import router as ai_jobs_router
from .notifications import router as notifications_router
from .level_change import router as level_change_router
from .billing import router as billing_router
from .progress import router as progress_router


api_router = APIRouter()

api_router.include_router(auth.router, tags=["auth"])

api_router.include_router(users_router)
# /questions/bulk-import-progress раньше /questions/{question_id}
api_router.include_router(questions_router)
api_router.include_router(content_router)
api_router.include_router(sessions_router)
api_router.include_router(validation_router)
api_router.include_router(ai_jobs_router)
api_router.include_router(notifications_router)
api_router.include_router(level_change_router)
api_router.include_router(billing_router)
api_router.include_router(progress_router)
