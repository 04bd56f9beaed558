from fastapi import APIRouter, Depends
from sqlmodel import Session

from app.api.deps import get_current_user_id
from app.core.database import get_db
from app.schemas.enrollment import MyEnrollmentResponse
from app.services import enrollment as enrollment_service

router = APIRouter(prefix="/api/my/enrollments", tags=["enrollments"])


@router.get("", response_model=list[MyEnrollmentResponse])
def my_enrollments(user_id: int = Depends(get_current_user_id), db: Session = Depends(get_db)):
    return enrollment_service.my_enrollments(db, user_id)


@router.get("/{enrollment_id}", response_model=MyEnrollmentResponse)
def my_enrollment(enrollment_id: int, user_id: int = Depends(get_current_user_id), db: Session = Depends(get_db)):
    return enrollment_service.my_enrollment(db, user_id, enrollment_id)
