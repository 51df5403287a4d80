from typing import List

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from ecahub.core.exceptions import NotFoundError, PermissionDeniedError
from ecahub.staff.models.students import ParentStudentLink, Student


async def get_student(db: AsyncSession, student_id: int, school_id: int) -> Student:
    result = await db.execute(
        select(Student).where(Student.id == student_id, Student.school_id == school_id)
    )
    student = result.scalar_one_or_none()
    if not student:
        raise NotFoundError("Student", str(student_id))
    return student


async def get_students_by_ids(
    db: AsyncSession, student_ids: List[int], school_id: int
) -> List[Student]:
    if not student_ids:
        return []
    result = await db.execute(
        select(Student).where(Student.id.in_(student_ids), Student.school_id == school_id)
    )
    return result.scalars().all()


async def get_parent_student_ids(db: AsyncSession, parent_user_id: int) -> List[int]:
    result = await db.execute(
        select(ParentStudentLink.student_id).where(
            ParentStudentLink.parent_user_id == parent_user_id
        )
    )
    return [row[0] for row in result.fetchall()]


async def get_student_for_parent(
    db: AsyncSession, parent_user_id: int, student_id: int, school_id: int
) -> Student:
    """Ученик, от имени которого родитель вправе действовать"""
    student = await get_student(db, student_id, school_id)
    if student_id not in await get_parent_student_ids(db, parent_user_id):
        raise PermissionDeniedError("act for", "student", "Student is not linked to this parent")
    return student
