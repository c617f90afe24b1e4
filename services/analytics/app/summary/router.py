from uuid import UUID

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import Settings
from app.database import get_db
from app.dependencies import get_current_user_required, get_settings
from app.summary import controller
from app.summary.schemas import CourseProgressResponse
from shared.models.user import CurrentUser

router = APIRouter(prefix="/analytics", tags=["Progress"])


@router.get(
    "/courses/{course_id}/progress",
    response_model=CourseProgressResponse,
    summary="Signed-in viewer's progress across a course",
    description="One resume checkpoint per watched video, most recent first.",
)
async def get_course_progress(
    course_id: UUID,
    user: CurrentUser = Depends(get_current_user_required),
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
) -> CourseProgressResponse:
    return await controller.get_course_progress(db, user.id, course_id, settings=settings)
