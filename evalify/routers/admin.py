"""Administrative endpoints: users, departments, semesters, batches,
courses and labs. Every route requires the ADMIN role.
"""

from typing import Optional

from fastapi import APIRouter, Depends, File, HTTPException, UploadFile
from sqlmodel import Session

from .. import models, schemas, services
from ..auth import admin_only
from ..config import settings
from ..database import get_session
from ..errors import http_error
from ..serializers import batch_out, course_out, department_out, lab_out, semester_out, user_out

router = APIRouter(prefix="/admin", tags=["admin"], dependencies=[Depends(admin_only)])


# users

@router.get('/users')
def list_users(search: Optional[str] = None, role: Optional[models.Role] = None,
               status: Optional[models.UserStatus] = None, page: int = 1, limit: int = 20,
               db: Session = Depends(get_session)):
    return services.UserService(db).list(search, role, status, page, limit)


@router.get('/users/{user_id}')
def get_user(user_id: int, db: Session = Depends(get_session)):
    try:
        return user_out(services.UserService(db).get(user_id))
    except ValueError as e:
        raise http_error(e)


@router.post('/users', status_code=201)
def create_user(payload: schemas.UserCreate, db: Session = Depends(get_session)):
    try:
        return user_out(services.UserService(db).create(payload))
    except ValueError as e:
        raise http_error(e)


@router.put('/users/{user_id}')
def update_user(user_id: int, payload: schemas.UserUpdate, db: Session = Depends(get_session)):
    try:
        return user_out(services.UserService(db).update(user_id, payload))
    except ValueError as e:
        raise http_error(e)


@router.delete('/users/{user_id}')
def delete_user(user_id: int, db: Session = Depends(get_session), admin: models.User = Depends(admin_only)):
    try:
        services.UserService(db).delete(user_id, acting_user_id=admin.id)
    except ValueError as e:
        raise http_error(e)
    return {'ok': True}


# departments

@router.get('/departments')
def list_departments(search: Optional[str] = None, is_active: Optional[models.Status] = None,
                     page: int = 1, limit: int = 20, db: Session = Depends(get_session)):
    return services.DepartmentService(db).list(search, is_active, page, limit)


@router.get('/departments/{department_id}')
def get_department(department_id: int, db: Session = Depends(get_session)):
    try:
        return department_out(services.DepartmentService(db).get(department_id))
    except ValueError as e:
        raise http_error(e)


@router.post('/departments', status_code=201)
def create_department(payload: schemas.DepartmentIn, db: Session = Depends(get_session)):
    try:
        return department_out(services.DepartmentService(db).create(payload))
    except ValueError as e:
        raise http_error(e)


@router.put('/departments/{department_id}')
def update_department(department_id: int, payload: schemas.DepartmentUpdate, db: Session = Depends(get_session)):
    try:
        return department_out(services.DepartmentService(db).update(department_id, payload))
    except ValueError as e:
        raise http_error(e)


@router.delete('/departments/{department_id}')
def delete_department(department_id: int, db: Session = Depends(get_session)):
    try:
        services.DepartmentService(db).delete(department_id)
    except ValueError as e:
        raise http_error(e)
    return {'ok': True}


# semesters

@router.get('/semesters')
def list_semesters(search: Optional[str] = None, year: Optional[int] = None, department_id: Optional[int] = None,
                   is_active: Optional[models.Status] = None, page: int = 1, limit: int = 20,
                   db: Session = Depends(get_session)):
    return services.SemesterService(db).list(search, year, department_id, is_active, page, limit)


@router.get('/semesters/years')
def semester_years(db: Session = Depends(get_session)):
    return services.SemesterService(db).unique_years()


@router.post('/semesters/bulk')
def bulk_create_semesters(payload: schemas.SemesterBulkIn, db: Session = Depends(get_session)):
    return services.SemesterService(db).bulk_create(payload.items)


@router.get('/semesters/{semester_id}')
def get_semester(semester_id: int, db: Session = Depends(get_session)):
    try:
        return semester_out(services.SemesterService(db).get(semester_id))
    except ValueError as e:
        raise http_error(e)


@router.post('/semesters', status_code=201)
def create_semester(payload: schemas.SemesterIn, db: Session = Depends(get_session)):
    try:
        return semester_out(services.SemesterService(db).create(payload))
    except ValueError as e:
        raise http_error(e)


@router.put('/semesters/{semester_id}')
def update_semester(semester_id: int, payload: schemas.SemesterUpdate, db: Session = Depends(get_session)):
    try:
        return semester_out(services.SemesterService(db).update(semester_id, payload))
    except ValueError as e:
        raise http_error(e)


@router.delete('/semesters/{semester_id}')
def delete_semester(semester_id: int, db: Session = Depends(get_session)):
    try:
        services.SemesterService(db).delete(semester_id)
    except ValueError as e:
        raise http_error(e)
    return {'ok': True}


@router.get('/semesters/{semester_id}/managers')
def get_semester_managers(semester_id: int, db: Session = Depends(get_session)):
    try:
        return services.SemesterService(db).get_managers(semester_id)
    except ValueError as e:
        raise http_error(e)


@router.get('/semesters/{semester_id}/managers/available')
def available_semester_managers(semester_id: int, search: Optional[str] = None, db: Session = Depends(get_session)):
    try:
        return services.SemesterService(db).available_managers(semester_id, search)
    except ValueError as e:
        raise http_error(e)


@router.post('/semesters/{semester_id}/managers')
def add_semester_manager(semester_id: int, payload: schemas.ManagerIn, db: Session = Depends(get_session)):
    try:
        services.SemesterService(db).add_manager(semester_id, payload.manager_id)
    except ValueError as e:
        raise http_error(e)
    return {'ok': True}


@router.delete('/semesters/{semester_id}/managers/{manager_id}')
def remove_semester_manager(semester_id: int, manager_id: int, db: Session = Depends(get_session)):
    try:
        services.SemesterService(db).remove_manager(semester_id, manager_id)
    except ValueError as e:
        raise http_error(e)
    return {'ok': True}


# batches

@router.get('/batches')
def list_batches(search: Optional[str] = None, department_id: Optional[int] = None,
                 is_active: Optional[models.Status] = None, page: int = 1, limit: int = 20,
                 db: Session = Depends(get_session)):
    return services.BatchService(db).list(search, department_id, is_active, page, limit)


@router.get('/batches/all')
def list_all_batches(db: Session = Depends(get_session)):
    return services.BatchService(db).list_all()


@router.get('/batches/{batch_id}')
def get_batch(batch_id: int, db: Session = Depends(get_session)):
    try:
        return batch_out(services.BatchService(db).get(batch_id))
    except ValueError as e:
        raise http_error(e)


@router.post('/batches', status_code=201)
def create_batch(payload: schemas.BatchIn, db: Session = Depends(get_session)):
    try:
        return batch_out(services.BatchService(db).create(payload))
    except ValueError as e:
        raise http_error(e)


@router.put('/batches/{batch_id}')
def update_batch(batch_id: int, payload: schemas.BatchUpdate, db: Session = Depends(get_session)):
    try:
        return batch_out(services.BatchService(db).update(batch_id, payload))
    except ValueError as e:
        raise http_error(e)


@router.delete('/batches/{batch_id}')
def delete_batch(batch_id: int, db: Session = Depends(get_session)):
    try:
        services.BatchService(db).delete(batch_id)
    except ValueError as e:
        raise http_error(e)
    return {'ok': True}


@router.get('/batches/{batch_id}/students')
def get_batch_students(batch_id: int, db: Session = Depends(get_session)):
    try:
        return services.BatchService(db).get_students(batch_id)
    except ValueError as e:
        raise http_error(e)


@router.get('/batches/{batch_id}/students/available')
def available_batch_students(batch_id: int, search: Optional[str] = None, db: Session = Depends(get_session)):
    try:
        return services.BatchService(db).available_students(batch_id, search)
    except ValueError as e:
        raise http_error(e)


@router.post('/batches/{batch_id}/students')
def add_batch_students(batch_id: int, payload: schemas.StudentIdsIn, db: Session = Depends(get_session)):
    try:
        return services.BatchService(db).add_students(batch_id, payload.student_ids)
    except ValueError as e:
        raise http_error(e)


@router.delete('/batches/{batch_id}/students')
def remove_batch_students(batch_id: int, payload: schemas.StudentIdsIn, db: Session = Depends(get_session)):
    try:
        services.BatchService(db).remove_students(batch_id, payload.student_ids)
    except ValueError as e:
        raise http_error(e)
    return {'ok': True}


# courses

@router.get('/courses')
def list_courses(search: Optional[str] = None, semester_id: Optional[int] = None,
                 type: Optional[models.CourseType] = None, is_active: Optional[models.Status] = None,
                 page: int = 1, limit: int = 20, db: Session = Depends(get_session)):
    return services.CourseService(db).list(search, semester_id, type, is_active, page, limit)


@router.post('/courses/bulk')
def bulk_create_courses(payload: schemas.CourseBulkIn, db: Session = Depends(get_session)):
    return services.CourseService(db).bulk_create(payload.items)


@router.post('/courses/check-duplicates')
def check_duplicate_courses(payload: schemas.CodesIn, db: Session = Depends(get_session)):
    return services.CourseService(db).check_duplicates(payload.codes)


@router.get('/courses/{course_id}')
def get_course(course_id: int, db: Session = Depends(get_session)):
    try:
        return course_out(services.CourseService(db).get(course_id))
    except ValueError as e:
        raise http_error(e)


@router.post('/courses', status_code=201)
def create_course(payload: schemas.CourseIn, db: Session = Depends(get_session)):
    try:
        return course_out(services.CourseService(db).create(payload))
    except ValueError as e:
        raise http_error(e)


@router.put('/courses/{course_id}')
def update_course(course_id: int, payload: schemas.CourseUpdate, db: Session = Depends(get_session)):
    try:
        return course_out(services.CourseService(db).update(course_id, payload))
    except ValueError as e:
        raise http_error(e)


@router.delete('/courses/{course_id}')
def delete_course(course_id: int, db: Session = Depends(get_session)):
    try:
        services.CourseService(db).delete(course_id)
    except ValueError as e:
        raise http_error(e)
    return {'ok': True}


@router.post('/courses/{course_id}/image')
def upload_course_image(course_id: int, file: UploadFile = File(...), db: Session = Depends(get_session)):
    """Upload a cover image (any format Pillow can read); it is stored as PNG."""
    content = file.file.read(settings.MAX_IMAGE_BYTES + 1)
    if len(content) > settings.MAX_IMAGE_BYTES:
        raise HTTPException(status_code=400, detail='file too large')
    try:
        return course_out(services.CourseService(db).set_image(course_id, content))
    except ValueError as e:
        raise http_error(e)


@router.get('/courses/{course_id}/students')
def get_course_students(course_id: int, db: Session = Depends(get_session)):
    try:
        return services.CourseService(db).get_students(course_id)
    except ValueError as e:
        raise http_error(e)


@router.get('/courses/{course_id}/students/available')
def available_course_students(course_id: int, search: Optional[str] = None, db: Session = Depends(get_session)):
    try:
        return services.CourseService(db).available_students(course_id, search)
    except ValueError as e:
        raise http_error(e)


@router.post('/courses/{course_id}/students')
def add_course_student(course_id: int, payload: schemas.StudentIdIn, db: Session = Depends(get_session)):
    try:
        services.CourseService(db).add_student(course_id, payload.student_id)
    except ValueError as e:
        raise http_error(e)
    return {'ok': True}


@router.delete('/courses/{course_id}/students/{student_id}')
def remove_course_student(course_id: int, student_id: int, db: Session = Depends(get_session)):
    try:
        services.CourseService(db).remove_student(course_id, student_id)
    except ValueError as e:
        raise http_error(e)
    return {'ok': True}


@router.get('/courses/{course_id}/instructors')
def get_course_instructors(course_id: int, db: Session = Depends(get_session)):
    try:
        return services.CourseService(db).get_instructors(course_id)
    except ValueError as e:
        raise http_error(e)


@router.get('/courses/{course_id}/instructors/available')
def available_course_faculty(course_id: int, search: Optional[str] = None, db: Session = Depends(get_session)):
    try:
        return services.CourseService(db).available_faculty(course_id, search)
    except ValueError as e:
        raise http_error(e)


@router.post('/courses/{course_id}/instructors')
def add_course_instructor(course_id: int, payload: schemas.InstructorIdIn, db: Session = Depends(get_session)):
    try:
        services.CourseService(db).add_instructor(course_id, payload.instructor_id)
    except ValueError as e:
        raise http_error(e)
    return {'ok': True}


@router.delete('/courses/{course_id}/instructors/{instructor_id}')
def remove_course_instructor(course_id: int, instructor_id: int, db: Session = Depends(get_session)):
    try:
        services.CourseService(db).remove_instructor(course_id, instructor_id)
    except ValueError as e:
        raise http_error(e)
    return {'ok': True}


@router.get('/courses/{course_id}/batches')
def get_course_batches(course_id: int, db: Session = Depends(get_session)):
    try:
        return services.CourseService(db).get_batches(course_id)
    except ValueError as e:
        raise http_error(e)


@router.get('/courses/{course_id}/batches/available')
def available_course_batches(course_id: int, search: Optional[str] = None, db: Session = Depends(get_session)):
    try:
        return services.CourseService(db).available_batches(course_id, search)
    except ValueError as e:
        raise http_error(e)


@router.post('/courses/{course_id}/batches')
def add_course_batch(course_id: int, payload: schemas.BatchIdIn, db: Session = Depends(get_session)):
    try:
        services.CourseService(db).add_batch(course_id, payload.batch_id)
    except ValueError as e:
        raise http_error(e)
    return {'ok': True}


@router.delete('/courses/{course_id}/batches/{batch_id}')
def remove_course_batch(course_id: int, batch_id: int, db: Session = Depends(get_session)):
    try:
        services.CourseService(db).remove_batch(course_id, batch_id)
    except ValueError as e:
        raise http_error(e)
    return {'ok': True}


# labs

@router.get('/labs')
def list_labs(search: Optional[str] = None, block: Optional[str] = None, is_active: Optional[models.Status] = None,
              page: int = 1, limit: int = 15, db: Session = Depends(get_session)):
    return services.LabService(db).list(search, block, is_active, page, limit)


@router.get('/labs/blocks')
def lab_blocks(db: Session = Depends(get_session)):
    return services.LabService(db).unique_blocks()


@router.get('/labs/{lab_id}')
def get_lab(lab_id: int, db: Session = Depends(get_session)):
    try:
        return lab_out(services.LabService(db).get(lab_id))
    except ValueError as e:
        raise http_error(e)


@router.post('/labs', status_code=201)
def create_lab(payload: schemas.LabIn, db: Session = Depends(get_session)):
    return lab_out(services.LabService(db).create(payload))


@router.put('/labs/{lab_id}')
def update_lab(lab_id: int, payload: schemas.LabUpdate, db: Session = Depends(get_session)):
    try:
        return lab_out(services.LabService(db).update(lab_id, payload))
    except ValueError as e:
        raise http_error(e)


@router.delete('/labs/{lab_id}')
def delete_lab(lab_id: int, db: Session = Depends(get_session)):
    try:
        services.LabService(db).delete(lab_id)
    except ValueError as e:
        raise http_error(e)
    return {'ok': True}
