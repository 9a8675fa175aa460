"""Administrative services: users, departments, semesters, batches,
courses and labs.

Each service validates input against the current database state and
persists through the matching repository. Lookup failures raise
`NotFoundError`, uniqueness clashes `ConflictError`; everything else that
is rejected is a plain `ValueError`.
"""

import logging
from typing import Iterable, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from .. import models, repositories, schemas
from ..config import settings
from ..errors import ConflictError, NotFoundError
from ..serializers import (
    batch_out, course_out, department_out, lab_out, semester_out, user_brief, user_out,
)
from ..utils.images import save_course_image
from .auth import hash_password

logger = logging.getLogger("evalify.academics")


def paging(page: int, limit: int):
    """Return a sane `(offset, limit)` pair for 1-based `page`."""
    page = max(1, int(page or 1))
    limit = max(1, min(int(limit or 1), 200))
    return (page - 1) * limit, limit


def page_payload(key: str, rows: List[dict], total: int, offset: int) -> dict:
    return {key: rows, 'total': total, 'hasMore': offset + len(rows) < total}


def _apply(obj, data: dict):
    for field, value in data.items():
        setattr(obj, field, value)
    return obj


class UserService:
    """Admin user management plus self-service profile updates."""
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.UserRepository(session)

    def list(self, search: Optional[str] = None, role: Optional[models.Role] = None,
             status: Optional[models.UserStatus] = None, page: int = 1, limit: int = 20) -> dict:
        offset, limit = paging(page, limit)
        rows, total = self.repo.list(search=search, roles=[role] if role else None, status=status,
                                     offset=offset, limit=limit)
        return page_payload('users', [user_out(u) for u in rows], total, offset)

    def get(self, user_id: int) -> models.User:
        user = self.repo.get(user_id)
        if not user:
            raise NotFoundError("User not found")
        return user

    def _check_unique(self, email: Optional[str], profile_id: Optional[str], exclude_id: Optional[int] = None):
        if email:
            clash = self.repo.get_by_email(email)
            if clash and clash.id != exclude_id:
                raise ConflictError("A user with this email already exists")
        if profile_id:
            clash = self.repo.get_by_profile_id(profile_id)
            if clash and clash.id != exclude_id:
                raise ConflictError("A user with this profile id already exists")

    def create(self, data: schemas.UserCreate) -> models.User:
        self._check_unique(data.email, data.profile_id)
        user = models.User(
            name=data.name.strip(),
            email=data.email.strip().lower(),
            profile_id=data.profile_id.strip(),
            password_hash=hash_password(data.password),
            role=data.role,
            phone=data.phone,
            status=data.status,
        )
        created = self.repo.create(user)
        logger.info("user_created id=%s role=%s", created.id, created.role.value)
        return created

    def update(self, user_id: int, data: schemas.UserUpdate) -> models.User:
        user = self.get(user_id)
        changes = data.model_dump(exclude_unset=True, exclude_none=True)
        self._check_unique(changes.get('email'), changes.get('profile_id'), exclude_id=user.id)
        password = changes.pop('password', None)
        if password:
            user.password_hash = hash_password(password)
        if 'email' in changes:
            changes['email'] = changes['email'].strip().lower()
        _apply(user, changes)
        user.updated_at = models.utcnow()
        return self.repo.save(user)

    def delete(self, user_id: int, acting_user_id: Optional[int] = None) -> None:
        user = self.get(user_id)
        if acting_user_id is not None and user.id == acting_user_id:
            raise ValueError("You cannot delete your own account")
        self.repo.delete(user)
        logger.info("user_deleted id=%s", user_id)

    def get_students(self, search: Optional[str] = None, limit: int = 50) -> List[dict]:
        rows, _ = self.repo.list(search=search, roles=[models.Role.STUDENT],
                                 status=models.UserStatus.ACTIVE, limit=max(1, min(limit, 200)))
        return [user_brief(u) for u in rows]

    def update_profile(self, user_id: int, data: schemas.ProfileUpdate) -> models.User:
        user = self.get(user_id)
        _apply(user, data.model_dump(exclude_unset=True, exclude_none=True))
        user.updated_at = models.utcnow()
        return self.repo.save(user)

    def require_role(self, user_ids: Iterable[int], roles: Iterable[models.Role], what: str) -> List[models.User]:
        """Load `user_ids` and make sure every one of them has one of `roles`."""
        ids = list(dict.fromkeys(user_ids))
        users = self.repo.get_many(ids)
        found = {u.id for u in users}
        missing = [i for i in ids if i not in found]
        if missing:
            raise NotFoundError(f"Users not found: {missing}")
        allowed = set(roles)
        wrong = [u.id for u in users if u.role not in allowed]
        if wrong:
            raise ValueError(f"Only {what} can be assigned (invalid users: {wrong})")
        return users


class DepartmentService:
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.DepartmentRepository(session)

    def list(self, search=None, is_active=None, page: int = 1, limit: int = 20) -> dict:
        offset, limit = paging(page, limit)
        rows, total = self.repo.list(search=search, is_active=is_active, offset=offset, limit=limit)
        return page_payload('departments', [department_out(d) for d in rows], total, offset)

    def get(self, department_id: int) -> models.Department:
        dept = self.repo.get(department_id)
        if not dept:
            raise NotFoundError("Department not found")
        return dept

    def create(self, data: schemas.DepartmentIn) -> models.Department:
        if self.repo.get_by_name(data.name):
            raise ConflictError("A department with this name already exists")
        return self.repo.save(models.Department(name=data.name.strip(), is_active=data.is_active))

    def update(self, department_id: int, data: schemas.DepartmentUpdate) -> models.Department:
        dept = self.get(department_id)
        changes = data.model_dump(exclude_unset=True, exclude_none=True)
        if 'name' in changes:
            clash = self.repo.get_by_name(changes['name'])
            if clash and clash.id != dept.id:
                raise ConflictError("A department with this name already exists")
            changes['name'] = changes['name'].strip()
        return self.repo.save(_apply(dept, changes))

    def delete(self, department_id: int) -> None:
        self.repo.delete(self.get(department_id))


class SemesterService:
    """Semesters, bulk creation and semester managers."""
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.SemesterRepository(session)
        self.departments = DepartmentService(session)
        self.users = UserService(session)

    def list(self, search=None, year=None, department_id=None, is_active=None, page: int = 1, limit: int = 20) -> dict:
        offset, limit = paging(page, limit)
        rows, total = self.repo.list(search=search, year=year, department_id=department_id,
                                     is_active=is_active, offset=offset, limit=limit)
        return page_payload('semesters', [semester_out(s) for s in rows], total, offset)

    def get(self, semester_id: int) -> models.Semester:
        sem = self.repo.get(semester_id)
        if not sem:
            raise NotFoundError("Semester not found")
        return sem

    def create(self, data: schemas.SemesterIn) -> models.Semester:
        self.departments.get(data.department_id)
        if self.repo.find(data.name, data.year, data.department_id):
            raise ConflictError("Semester already exists for this department and year")
        return self.repo.save(models.Semester(**data.model_dump()))

    def update(self, semester_id: int, data: schemas.SemesterUpdate) -> models.Semester:
        sem = self.get(semester_id)
        changes = data.model_dump(exclude_unset=True, exclude_none=True)
        if 'department_id' in changes:
            self.departments.get(changes['department_id'])
        return self.repo.save(_apply(sem, changes))

    def delete(self, semester_id: int) -> None:
        self.repo.delete(self.get(semester_id))

    def unique_years(self) -> List[int]:
        return self.repo.unique_years()

    def get_managers(self, semester_id: int) -> List[dict]:
        self.get(semester_id)
        return [user_brief(u) for u in self.users.repo.get_many(self.repo.manager_ids(semester_id))]

    def add_manager(self, semester_id: int, manager_id: int) -> None:
        self.get(semester_id)
        self.users.require_role([manager_id], [models.Role.MANAGER], "managers")
        if self.repo.is_manager(semester_id, manager_id):
            raise ConflictError("Manager already assigned to this semester")
        self.repo.add_manager(semester_id, manager_id)

    def remove_manager(self, semester_id: int, manager_id: int) -> None:
        self.get(semester_id)
        if not self.repo.is_manager(semester_id, manager_id):
            raise NotFoundError("Manager is not assigned to this semester")
        self.repo.remove_manager(semester_id, manager_id)

    def available_managers(self, semester_id: int, search: Optional[str] = None) -> List[dict]:
        self.get(semester_id)
        rows, _ = self.users.repo.list(search=search, roles=[models.Role.MANAGER],
                                       status=models.UserStatus.ACTIVE,
                                       exclude_ids=self.repo.manager_ids(semester_id), limit=200)
        return [user_brief(u) for u in rows]

    def bulk_create(self, items: List[schemas.SemesterIn]) -> dict:
        """Create many semesters, skipping ones that already exist."""
        created, skipped = [], []
        for idx, item in enumerate(items):
            try:
                created.append(semester_out(self.create(item)))
            except ConflictError:
                skipped.append({'index': idx, 'name': item.name, 'reason': 'already exists'})
            except NotFoundError as e:
                skipped.append({'index': idx, 'name': item.name, 'reason': str(e)})
        return {'created': created, 'skipped': skipped}


class BatchService:
    """Batches and their student membership."""
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.BatchRepository(session)
        self.departments = DepartmentService(session)
        self.users = UserService(session)

    @staticmethod
    def _check_years(join_year: int, graduation_year: int):
        if graduation_year < join_year:
            raise ValueError("Graduation year must not be before join year")

    def list(self, search=None, department_id=None, is_active=None, page: int = 1, limit: int = 20) -> dict:
        offset, limit = paging(page, limit)
        rows, total = self.repo.list(search=search, department_id=department_id, is_active=is_active,
                                     offset=offset, limit=limit)
        return page_payload('batches', [batch_out(b) for b in rows], total, offset)

    def list_all(self) -> List[dict]:
        rows, _ = self.repo.list(is_active=models.Status.ACTIVE, limit=1000)
        return [batch_out(b) for b in rows]

    def get(self, batch_id: int) -> models.Batch:
        batch = self.repo.get(batch_id)
        if not batch:
            raise NotFoundError("Batch not found")
        return batch

    def create(self, data: schemas.BatchIn) -> models.Batch:
        self._check_years(data.join_year, data.graduation_year)
        self.departments.get(data.department_id)
        return self.repo.save(models.Batch(**data.model_dump()))

    def update(self, batch_id: int, data: schemas.BatchUpdate) -> models.Batch:
        batch = self.get(batch_id)
        changes = data.model_dump(exclude_unset=True, exclude_none=True)
        self._check_years(changes.get('join_year', batch.join_year),
                          changes.get('graduation_year', batch.graduation_year))
        if 'department_id' in changes:
            self.departments.get(changes['department_id'])
        return self.repo.save(_apply(batch, changes))

    def delete(self, batch_id: int) -> None:
        self.repo.delete(self.get(batch_id))

    def get_students(self, batch_id: int) -> List[dict]:
        self.get(batch_id)
        return [user_brief(u) for u in self.users.repo.get_many(self.repo.student_ids(batch_id))]

    def add_students(self, batch_id: int, student_ids: List[int]) -> dict:
        self.get(batch_id)
        self.users.require_role(student_ids, [models.Role.STUDENT], "students")
        added = self.repo.add_students(batch_id, student_ids)
        return {'added': added}

    def remove_students(self, batch_id: int, student_ids: List[int]) -> None:
        self.get(batch_id)
        self.repo.remove_students(batch_id, student_ids)

    def available_students(self, batch_id: int, search: Optional[str] = None) -> List[dict]:
        self.get(batch_id)
        rows, _ = self.users.repo.list(search=search, roles=[models.Role.STUDENT],
                                       status=models.UserStatus.ACTIVE,
                                       exclude_ids=self.repo.student_ids(batch_id), limit=200)
        return [user_brief(u) for u in rows]


class CourseService:
    """Course CRUD, enrolment, instructors and batch assignment."""
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.CourseRepository(session)
        self.semesters = SemesterService(session)
        self.batches = BatchService(session)
        self.users = UserService(session)

    def list(self, search=None, semester_id=None, course_type=None, is_active=None,
             page: int = 1, limit: int = 20) -> dict:
        offset, limit = paging(page, limit)
        rows, total = self.repo.list(search=search, semester_id=semester_id, course_type=course_type,
                                     is_active=is_active, offset=offset, limit=limit)
        return page_payload('courses', [course_out(c) for c in rows], total, offset)

    def get(self, course_id: int) -> models.Course:
        course = self.repo.get(course_id)
        if not course:
            raise NotFoundError("Course not found")
        return course

    def create(self, data: schemas.CourseIn) -> models.Course:
        self.semesters.get(data.semester_id)
        if self.repo.get_by_code(data.code):
            raise ConflictError(f"Course code already exists: {data.code}")
        payload = data.model_dump()
        payload['code'] = data.code.strip().upper()
        try:
            return self.repo.save(models.Course(**payload))
        except IntegrityError:
            self.session.rollback()
            raise ConflictError(f"Course code already exists: {data.code}")

    def update(self, course_id: int, data: schemas.CourseUpdate) -> models.Course:
        course = self.get(course_id)
        changes = data.model_dump(exclude_unset=True, exclude_none=True)
        if 'code' in changes:
            clash = self.repo.get_by_code(changes['code'])
            if clash and clash.id != course.id:
                raise ConflictError(f"Course code already exists: {changes['code']}")
            changes['code'] = changes['code'].strip().upper()
        if 'semester_id' in changes:
            self.semesters.get(changes['semester_id'])
        return self.repo.save(_apply(course, changes))

    def delete(self, course_id: int) -> None:
        self.repo.delete(self.get(course_id))

    def set_image(self, course_id: int, payload: bytes) -> models.Course:
        course = self.get(course_id)
        course.image = save_course_image(payload, course.id, settings.UPLOAD_DIR)
        logger.info("course_image_updated id=%s path=%s", course.id, course.image)
        return self.repo.save(course)

    def bulk_create(self, items: List[schemas.CourseIn]) -> dict:
        created, skipped = [], []
        for idx, item in enumerate(items):
            try:
                created.append(course_out(self.create(item)))
            except (ConflictError, NotFoundError) as e:
                skipped.append({'index': idx, 'code': item.code, 'reason': str(e)})
        return {'created': created, 'skipped': skipped}

    def check_duplicates(self, codes: List[str]) -> dict:
        return {'duplicates': sorted(self.repo.existing_codes(codes))}

    # students
    def get_students(self, course_id: int) -> List[dict]:
        self.get(course_id)
        return [user_brief(u) for u in self.users.repo.get_many(self.repo.student_ids(course_id))]

    def add_student(self, course_id: int, student_id: int) -> None:
        self.get(course_id)
        self.users.require_role([student_id], [models.Role.STUDENT], "students")
        if self.repo.is_student(course_id, student_id):
            raise ConflictError("Student already enrolled in this course")
        self.repo.add_students(course_id, [student_id])

    def remove_student(self, course_id: int, student_id: int) -> None:
        self.get(course_id)
        self.repo.remove_student(course_id, student_id)

    def available_students(self, course_id: int, search: Optional[str] = None) -> List[dict]:
        self.get(course_id)
        rows, _ = self.users.repo.list(search=search, roles=[models.Role.STUDENT],
                                       status=models.UserStatus.ACTIVE,
                                       exclude_ids=self.repo.student_ids(course_id), limit=200)
        return [user_brief(u) for u in rows]

    # instructors
    def get_instructors(self, course_id: int) -> List[dict]:
        self.get(course_id)
        return [user_brief(u) for u in self.users.repo.get_many(self.repo.instructor_ids(course_id))]

    def add_instructor(self, course_id: int, instructor_id: int) -> None:
        self.get(course_id)
        self.users.require_role([instructor_id], [models.Role.FACULTY, models.Role.MANAGER], "faculty or managers")
        if self.repo.is_instructor(course_id, instructor_id):
            raise ConflictError("Instructor already assigned to this course")
        self.repo.add_instructors(course_id, [instructor_id])

    def remove_instructor(self, course_id: int, instructor_id: int) -> None:
        self.get(course_id)
        self.repo.remove_instructor(course_id, instructor_id)

    def available_faculty(self, course_id: int, search: Optional[str] = None) -> List[dict]:
        self.get(course_id)
        rows, _ = self.users.repo.list(search=search, roles=[models.Role.FACULTY, models.Role.MANAGER],
                                       status=models.UserStatus.ACTIVE,
                                       exclude_ids=self.repo.instructor_ids(course_id), limit=200)
        return [user_brief(u) for u in rows]

    # batches
    def get_batches(self, course_id: int) -> List[dict]:
        self.get(course_id)
        return [batch_out(b) for b in self.batches.repo.get_many(self.repo.batch_ids(course_id))]

    def add_batch(self, course_id: int, batch_id: int) -> None:
        self.get(course_id)
        self.batches.get(batch_id)
        if batch_id in self.repo.batch_ids(course_id):
            raise ConflictError("Batch already assigned to this course")
        self.repo.add_batches(course_id, [batch_id])

    def remove_batch(self, course_id: int, batch_id: int) -> None:
        self.get(course_id)
        self.repo.remove_batch(course_id, batch_id)

    def available_batches(self, course_id: int, search: Optional[str] = None) -> List[dict]:
        self.get(course_id)
        rows, _ = self.batches.repo.list(search=search, is_active=models.Status.ACTIVE,
                                         exclude_ids=self.repo.batch_ids(course_id), limit=200)
        return [batch_out(b) for b in rows]

    # role-scoped listings
    def staff_course_ids(self, user_id: int) -> List[int]:
        """Courses a faculty member instructs plus courses in semesters they manage."""
        instructed = self.repo.course_ids_for_instructor(user_id)
        managed = self.repo.course_ids_in_semesters(self.semesters.repo.managed_semester_ids(user_id))
        return list(dict.fromkeys(instructed + managed))

    def student_course_ids(self, student_id: int) -> List[int]:
        """Direct enrolments plus courses assigned to the student's batches."""
        direct = self.repo.course_ids_for_student(student_id)
        via_batch = self.repo.course_ids_for_batches(self.batches.repo.batch_ids_for_student(student_id))
        return list(dict.fromkeys(direct + via_batch))

    def _scoped_list(self, course_ids: List[int], search, course_type, is_active, limit: int, offset: int) -> dict:
        if not course_ids:
            return {'courses': [], 'total': 0, 'hasMore': False}
        offset = max(0, offset)
        limit = max(1, min(limit, 100))
        rows, total = self.repo.list(search=search, course_type=course_type, is_active=is_active,
                                     course_ids=course_ids, offset=offset, limit=limit)
        sems = {s.id: s for s in (self.semesters.repo.get(sid) for sid in {c.semester_id for c in rows}) if s}
        out = []
        for c in rows:
            item = course_out(c)
            sem = sems.get(c.semester_id)
            item['semester_name'] = sem.name if sem else None
            item['semester_year'] = sem.year if sem else None
            out.append(item)
        return page_payload('courses', out, total, offset)

    def list_for_staff(self, user_id: int, search=None, course_type=None,
                       is_active=models.Status.ACTIVE, limit: int = 12, offset: int = 0) -> dict:
        result = self._scoped_list(self.staff_course_ids(user_id), search, course_type, is_active, limit, offset)
        logger.info("staff_courses_listed user_id=%s total=%s", user_id, result['total'])
        return result

    def list_for_student(self, student_id: int, search=None, is_active=models.Status.ACTIVE,
                         limit: int = 12, offset: int = 0) -> dict:
        return self._scoped_list(self.student_course_ids(student_id), search, None, is_active, limit, offset)


class LabService:
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.LabRepository(session)

    def list(self, search=None, block=None, is_active=None, page: int = 1, limit: int = 15) -> dict:
        offset, limit = paging(page, limit)
        rows, total = self.repo.list(search=search, block=block, is_active=is_active, offset=offset, limit=limit)
        return page_payload('labs', [lab_out(lab) for lab in rows], total, offset)

    def unique_blocks(self) -> List[str]:
        return self.repo.unique_blocks()

    def get(self, lab_id: int) -> models.Lab:
        lab = self.repo.get(lab_id)
        if not lab:
            raise NotFoundError("Lab not found")
        return lab

    def create(self, data: schemas.LabIn) -> models.Lab:
        return self.repo.save(models.Lab(**data.model_dump()))

    def update(self, lab_id: int, data: schemas.LabUpdate) -> models.Lab:
        lab = self.get(lab_id)
        return self.repo.save(_apply(lab, data.model_dump(exclude_unset=True, exclude_none=True)))

    def delete(self, lab_id: int) -> None:
        self.repo.delete(self.get(lab_id))
