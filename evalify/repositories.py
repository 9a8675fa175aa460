"""Repository classes encapsulating database operations.

Each repository is small and focused on a single aggregate (users,
academic structure, labs, banks, questions, quizzes, responses).
Repositories return SQLModel objects and perform commits/refreshes where
appropriate; they never enforce business rules, that is the job of the
services.
"""

from datetime import datetime
from typing import Iterable, List, Optional, Sequence, Tuple
from sqlalchemy import delete, func, update
from sqlmodel import Session, select, col
from . import models


def _like(term: str) -> str:
    return f"%{term.strip()}%"


class _Repository:
    def __init__(self, session: Session):
        self.session = session

    def save(self, obj):
        """Persist `obj` (new or modified) and return the refreshed instance."""
        self.session.add(obj)
        self.session.commit()
        self.session.refresh(obj)
        return obj

    def delete(self, obj) -> None:
        self.session.delete(obj)
        self.session.commit()

    def _page(self, stmt, offset: int, limit: int) -> Tuple[list, int]:
        """Run `stmt` with pagination and return `(rows, total)`."""
        total = self.session.exec(select(func.count()).select_from(stmt.subquery())).one()
        rows = self.session.exec(stmt.offset(offset).limit(limit)).all()
        return list(rows), int(total)

    def _link_exists(self, model, **keys) -> bool:
        stmt = select(model)
        for name, value in keys.items():
            stmt = stmt.where(getattr(model, name) == value)
        return self.session.exec(stmt).first() is not None

    def _add_links(self, model, fixed: dict, field: str, ids: Iterable[int]) -> int:
        """Insert link rows `model(**fixed, field=id)`, skipping existing ones."""
        added = 0
        for value in dict.fromkeys(ids):
            if self._link_exists(model, **fixed, **{field: value}):
                continue
            self.session.add(model(**fixed, **{field: value}))
            added += 1
        self.session.commit()
        return added

    def _remove_links(self, model, fixed: dict, field: str, ids: Iterable[int]) -> None:
        stmt = delete(model).where(getattr(model, field).in_(list(ids)))
        for name, value in fixed.items():
            stmt = stmt.where(getattr(model, name) == value)
        self.session.execute(stmt)
        self.session.commit()

    def _replace_links(self, model, fixed: dict, field: str, ids: Iterable[int]) -> None:
        stmt = delete(model)
        for name, value in fixed.items():
            stmt = stmt.where(getattr(model, name) == value)
        self.session.execute(stmt)
        for value in dict.fromkeys(ids):
            self.session.add(model(**fixed, **{field: value}))
        self.session.commit()

    def _linked_ids(self, model, fixed_field: str, fixed_value, field: str) -> List[int]:
        stmt = select(getattr(model, field)).where(getattr(model, fixed_field) == fixed_value)
        return list(self.session.exec(stmt).all())


class UserRepository(_Repository):
    """CRUD operations for `User` objects."""

    def create(self, user: models.User) -> models.User:
        """Persist a new user and return the managed instance."""
        return self.save(user)

    def get(self, user_id: int) -> Optional[models.User]:
        """Get a `User` by primary key."""
        return self.session.get(models.User, user_id)

    def get_by_email(self, email: str) -> Optional[models.User]:
        """Return a `User` by email (case-insensitive) or `None` if not found."""
        stmt = select(models.User).where(func.lower(models.User.email) == email.strip().lower())
        return self.session.exec(stmt).first()

    def get_by_profile_id(self, profile_id: str) -> Optional[models.User]:
        stmt = select(models.User).where(models.User.profile_id == profile_id)
        return self.session.exec(stmt).first()

    def get_many(self, user_ids: Iterable[int]) -> List[models.User]:
        ids = list(user_ids)
        if not ids:
            return []
        stmt = select(models.User).where(col(models.User.id).in_(ids)).order_by(models.User.name)
        return list(self.session.exec(stmt).all())

    def list(self, search: Optional[str] = None, roles: Optional[Sequence[models.Role]] = None,
             status: Optional[models.UserStatus] = None, exclude_ids: Sequence[int] = (),
             offset: int = 0, limit: int = 50) -> Tuple[List[models.User], int]:
        """Filtered, paginated user listing ordered by name."""
        stmt = select(models.User)
        if search:
            stmt = stmt.where(
                col(models.User.name).ilike(_like(search))
                | col(models.User.email).ilike(_like(search))
                | col(models.User.profile_id).ilike(_like(search))
            )
        if roles:
            stmt = stmt.where(col(models.User.role).in_(list(roles)))
        if status:
            stmt = stmt.where(models.User.status == status)
        if exclude_ids:
            stmt = stmt.where(col(models.User.id).not_in(list(exclude_ids)))
        return self._page(stmt.order_by(models.User.name), offset, limit)

    def count_by_role(self, role: models.Role) -> int:
        stmt = select(func.count()).select_from(models.User).where(models.User.role == role)
        return int(self.session.exec(stmt).one())


class DepartmentRepository(_Repository):
    def get(self, department_id: int) -> Optional[models.Department]:
        return self.session.get(models.Department, department_id)

    def get_by_name(self, name: str) -> Optional[models.Department]:
        stmt = select(models.Department).where(func.lower(models.Department.name) == name.strip().lower())
        return self.session.exec(stmt).first()

    def list(self, search: Optional[str] = None, is_active: Optional[models.Status] = None,
             offset: int = 0, limit: int = 50):
        stmt = select(models.Department)
        if search:
            stmt = stmt.where(col(models.Department.name).ilike(_like(search)))
        if is_active:
            stmt = stmt.where(models.Department.is_active == is_active)
        return self._page(stmt.order_by(models.Department.name), offset, limit)


class SemesterRepository(_Repository):
    """Semesters and their manager assignments."""

    def get(self, semester_id: int) -> Optional[models.Semester]:
        return self.session.get(models.Semester, semester_id)

    def find(self, name: str, year: int, department_id: int) -> Optional[models.Semester]:
        stmt = select(models.Semester).where(
            func.lower(models.Semester.name) == name.strip().lower(),
            models.Semester.year == year,
            models.Semester.department_id == department_id,
        )
        return self.session.exec(stmt).first()

    def list(self, search: Optional[str] = None, year: Optional[int] = None,
             department_id: Optional[int] = None, is_active: Optional[models.Status] = None,
             offset: int = 0, limit: int = 50):
        stmt = select(models.Semester)
        if search:
            stmt = stmt.where(col(models.Semester.name).ilike(_like(search)))
        if year is not None:
            stmt = stmt.where(models.Semester.year == year)
        if department_id is not None:
            stmt = stmt.where(models.Semester.department_id == department_id)
        if is_active:
            stmt = stmt.where(models.Semester.is_active == is_active)
        stmt = stmt.order_by(col(models.Semester.year).desc(), models.Semester.name)
        return self._page(stmt, offset, limit)

    def unique_years(self) -> List[int]:
        stmt = select(models.Semester.year).distinct().order_by(col(models.Semester.year).desc())
        return list(self.session.exec(stmt).all())

    def manager_ids(self, semester_id: int) -> List[int]:
        return self._linked_ids(models.SemesterManager, "semester_id", semester_id, "manager_id")

    def is_manager(self, semester_id: int, user_id: int) -> bool:
        return self._link_exists(models.SemesterManager, semester_id=semester_id, manager_id=user_id)

    def add_manager(self, semester_id: int, user_id: int) -> None:
        self._add_links(models.SemesterManager, {"semester_id": semester_id}, "manager_id", [user_id])

    def remove_manager(self, semester_id: int, user_id: int) -> None:
        self._remove_links(models.SemesterManager, {"semester_id": semester_id}, "manager_id", [user_id])

    def managed_semester_ids(self, user_id: int) -> List[int]:
        return self._linked_ids(models.SemesterManager, "manager_id", user_id, "semester_id")


class BatchRepository(_Repository):
    """Batches and batch membership."""

    def get(self, batch_id: int) -> Optional[models.Batch]:
        return self.session.get(models.Batch, batch_id)

    def get_many(self, batch_ids: Iterable[int]) -> List[models.Batch]:
        ids = list(batch_ids)
        if not ids:
            return []
        return list(self.session.exec(select(models.Batch).where(col(models.Batch.id).in_(ids))).all())

    def list(self, search: Optional[str] = None, department_id: Optional[int] = None,
             is_active: Optional[models.Status] = None, exclude_ids: Sequence[int] = (),
             offset: int = 0, limit: int = 50):
        stmt = select(models.Batch)
        if search:
            stmt = stmt.where(
                col(models.Batch.name).ilike(_like(search)) | col(models.Batch.section).ilike(_like(search))
            )
        if department_id is not None:
            stmt = stmt.where(models.Batch.department_id == department_id)
        if is_active:
            stmt = stmt.where(models.Batch.is_active == is_active)
        if exclude_ids:
            stmt = stmt.where(col(models.Batch.id).not_in(list(exclude_ids)))
        stmt = stmt.order_by(col(models.Batch.join_year).desc(), models.Batch.name, models.Batch.section)
        return self._page(stmt, offset, limit)

    def student_ids(self, batch_id: int) -> List[int]:
        return self._linked_ids(models.BatchStudent, "batch_id", batch_id, "student_id")

    def add_students(self, batch_id: int, student_ids: Iterable[int]) -> int:
        return self._add_links(models.BatchStudent, {"batch_id": batch_id}, "student_id", student_ids)

    def remove_students(self, batch_id: int, student_ids: Iterable[int]) -> None:
        self._remove_links(models.BatchStudent, {"batch_id": batch_id}, "student_id", student_ids)

    def batch_ids_for_student(self, student_id: int) -> List[int]:
        return self._linked_ids(models.BatchStudent, "student_id", student_id, "batch_id")


class CourseRepository(_Repository):
    """Courses with their students, instructors and batches."""

    def get(self, course_id: int) -> Optional[models.Course]:
        return self.session.get(models.Course, course_id)

    def get_many(self, course_ids: Iterable[int]) -> List[models.Course]:
        ids = list(course_ids)
        if not ids:
            return []
        return list(self.session.exec(select(models.Course).where(col(models.Course.id).in_(ids))).all())

    def get_by_code(self, code: str) -> Optional[models.Course]:
        stmt = select(models.Course).where(func.upper(models.Course.code) == code.strip().upper())
        return self.session.exec(stmt).first()

    def existing_codes(self, codes: Iterable[str]) -> List[str]:
        wanted = [c.strip().upper() for c in codes if c and c.strip()]
        if not wanted:
            return []
        stmt = select(models.Course.code).where(func.upper(models.Course.code).in_(wanted))
        return list(self.session.exec(stmt).all())

    def list(self, search: Optional[str] = None, semester_id: Optional[int] = None,
             course_type: Optional[models.CourseType] = None, is_active: Optional[models.Status] = None,
             course_ids: Optional[Sequence[int]] = None, offset: int = 0, limit: int = 50):
        stmt = select(models.Course)
        if course_ids is not None:
            stmt = stmt.where(col(models.Course.id).in_(list(course_ids)))
        if search:
            stmt = stmt.where(
                col(models.Course.name).ilike(_like(search))
                | col(models.Course.code).ilike(_like(search))
                | col(models.Course.description).ilike(_like(search))
            )
        if semester_id is not None:
            stmt = stmt.where(models.Course.semester_id == semester_id)
        if course_type:
            stmt = stmt.where(models.Course.type == course_type)
        if is_active:
            stmt = stmt.where(models.Course.is_active == is_active)
        stmt = stmt.order_by(col(models.Course.created_at).desc(), col(models.Course.id).desc())
        return self._page(stmt, offset, limit)

    def course_ids_in_semesters(self, semester_ids: Iterable[int]) -> List[int]:
        ids = list(semester_ids)
        if not ids:
            return []
        stmt = select(models.Course.id).where(col(models.Course.semester_id).in_(ids))
        return list(self.session.exec(stmt).all())

    # students
    def student_ids(self, course_id: int) -> List[int]:
        return self._linked_ids(models.CourseStudent, "course_id", course_id, "student_id")

    def is_student(self, course_id: int, student_id: int) -> bool:
        return self._link_exists(models.CourseStudent, course_id=course_id, student_id=student_id)

    def add_students(self, course_id: int, student_ids: Iterable[int]) -> int:
        return self._add_links(models.CourseStudent, {"course_id": course_id}, "student_id", student_ids)

    def remove_student(self, course_id: int, student_id: int) -> None:
        self._remove_links(models.CourseStudent, {"course_id": course_id}, "student_id", [student_id])

    def course_ids_for_student(self, student_id: int) -> List[int]:
        return self._linked_ids(models.CourseStudent, "student_id", student_id, "course_id")

    # instructors
    def instructor_ids(self, course_id: int) -> List[int]:
        return self._linked_ids(models.CourseInstructor, "course_id", course_id, "instructor_id")

    def is_instructor(self, course_id: int, user_id: int) -> bool:
        return self._link_exists(models.CourseInstructor, course_id=course_id, instructor_id=user_id)

    def add_instructors(self, course_id: int, user_ids: Iterable[int]) -> int:
        return self._add_links(models.CourseInstructor, {"course_id": course_id}, "instructor_id", user_ids)

    def remove_instructor(self, course_id: int, user_id: int) -> None:
        self._remove_links(models.CourseInstructor, {"course_id": course_id}, "instructor_id", [user_id])

    def course_ids_for_instructor(self, user_id: int) -> List[int]:
        return self._linked_ids(models.CourseInstructor, "instructor_id", user_id, "course_id")

    # batches
    def batch_ids(self, course_id: int) -> List[int]:
        return self._linked_ids(models.CourseBatch, "course_id", course_id, "batch_id")

    def add_batches(self, course_id: int, batch_ids: Iterable[int]) -> int:
        return self._add_links(models.CourseBatch, {"course_id": course_id}, "batch_id", batch_ids)

    def remove_batch(self, course_id: int, batch_id: int) -> None:
        self._remove_links(models.CourseBatch, {"course_id": course_id}, "batch_id", [batch_id])

    def course_ids_for_batches(self, batch_ids: Iterable[int]) -> List[int]:
        ids = list(batch_ids)
        if not ids:
            return []
        stmt = select(models.CourseBatch.course_id).where(col(models.CourseBatch.batch_id).in_(ids))
        return list(self.session.exec(stmt).all())


class LabRepository(_Repository):
    def get(self, lab_id: int) -> Optional[models.Lab]:
        return self.session.get(models.Lab, lab_id)

    def get_many(self, lab_ids: Iterable[int]) -> List[models.Lab]:
        ids = list(lab_ids)
        if not ids:
            return []
        return list(self.session.exec(select(models.Lab).where(col(models.Lab.id).in_(ids))).all())

    def list(self, search: Optional[str] = None, block: Optional[str] = None,
             is_active: Optional[models.Status] = None, offset: int = 0, limit: int = 15):
        stmt = select(models.Lab)
        if search:
            stmt = stmt.where(
                col(models.Lab.name).ilike(_like(search))
                | col(models.Lab.block).ilike(_like(search))
                | col(models.Lab.ip_subnet).ilike(_like(search))
            )
        if block:
            stmt = stmt.where(models.Lab.block == block)
        if is_active:
            stmt = stmt.where(models.Lab.is_active == is_active)
        return self._page(stmt.order_by(models.Lab.block, models.Lab.name), offset, limit)

    def unique_blocks(self) -> List[str]:
        stmt = select(models.Lab.block).distinct().order_by(models.Lab.block)
        return list(self.session.exec(stmt).all())


class BankRepository(_Repository):
    """Question banks and their share records."""

    def get(self, bank_id: int) -> Optional[models.Bank]:
        return self.session.get(models.Bank, bank_id)

    def get_share(self, bank_id: int, user_id: int) -> Optional[models.BankUser]:
        return self.session.get(models.BankUser, (bank_id, user_id))

    def list_shares(self, bank_id: int) -> List[models.BankUser]:
        stmt = select(models.BankUser).where(models.BankUser.bank_id == bank_id)
        return list(self.session.exec(stmt).all())

    def add_shares(self, bank_id: int, user_ids: Iterable[int], access_level: models.BankAccess) -> int:
        added = 0
        for user_id in dict.fromkeys(user_ids):
            if self.get_share(bank_id, user_id):
                continue
            self.session.add(models.BankUser(bank_id=bank_id, user_id=user_id, access_level=access_level))
            added += 1
        self.session.commit()
        return added

    def remove_share(self, bank_id: int, user_id: int) -> None:
        self._remove_links(models.BankUser, {"bank_id": bank_id}, "user_id", [user_id])

    def list_owned(self, user_id: int, search: Optional[str] = None) -> List[models.Bank]:
        stmt = select(models.Bank).where(models.Bank.created_by_id == user_id)
        if search:
            stmt = stmt.where(col(models.Bank.name).ilike(_like(search)) | col(models.Bank.course_code).ilike(_like(search)))
        return list(self.session.exec(stmt.order_by(col(models.Bank.created_at).desc())).all())

    def list_shared_with(self, user_id: int, search: Optional[str] = None) -> List[Tuple[models.Bank, models.BankUser]]:
        stmt = (
            select(models.Bank, models.BankUser)
            .join(models.BankUser, models.BankUser.bank_id == models.Bank.id)
            .where(models.BankUser.user_id == user_id)
        )
        if search:
            stmt = stmt.where(col(models.Bank.name).ilike(_like(search)) | col(models.Bank.course_code).ilike(_like(search)))
        return list(self.session.exec(stmt.order_by(col(models.Bank.created_at).desc())).all())

    def question_count(self, bank_id: int) -> int:
        stmt = select(func.count()).select_from(models.BankQuestion).where(models.BankQuestion.bank_id == bank_id)
        return int(self.session.exec(stmt).one())

    def share_count(self, bank_id: int) -> int:
        stmt = select(func.count()).select_from(models.BankUser).where(models.BankUser.bank_id == bank_id)
        return int(self.session.exec(stmt).one())


class TopicRepository(_Repository):
    def get(self, topic_id: int) -> Optional[models.Topic]:
        return self.session.get(models.Topic, topic_id)

    def get_by_name(self, bank_id: int, name: str) -> Optional[models.Topic]:
        stmt = select(models.Topic).where(
            models.Topic.bank_id == bank_id, func.lower(models.Topic.name) == name.strip().lower()
        )
        return self.session.exec(stmt).first()

    def list_by_bank(self, bank_id: int) -> List[models.Topic]:
        stmt = select(models.Topic).where(models.Topic.bank_id == bank_id).order_by(models.Topic.name)
        return list(self.session.exec(stmt).all())

    def question_count(self, topic_id: int) -> int:
        stmt = select(func.count()).select_from(models.TopicQuestion).where(models.TopicQuestion.topic_id == topic_id)
        return int(self.session.exec(stmt).one())


class QuestionRepository(_Repository):
    """Questions, their bank placement and topic tags."""

    def get(self, question_id: int) -> Optional[models.Question]:
        """Fetch a question by id."""
        return self.session.get(models.Question, question_id)

    def get_many(self, question_ids: Iterable[int]) -> List[models.Question]:
        ids = list(question_ids)
        if not ids:
            return []
        return list(self.session.exec(select(models.Question).where(col(models.Question.id).in_(ids))).all())

    def add_to_bank(self, bank_id: int, question_id: int) -> models.BankQuestion:
        return self.save(models.BankQuestion(bank_id=bank_id, question_id=question_id))

    def get_bank_questions(self, bank_question_ids: Iterable[int]) -> List[models.BankQuestion]:
        ids = list(bank_question_ids)
        if not ids:
            return []
        stmt = select(models.BankQuestion).where(col(models.BankQuestion.id).in_(ids))
        return list(self.session.exec(stmt).all())

    def bank_ids_for_question(self, question_id: int) -> List[int]:
        return self._linked_ids(models.BankQuestion, "question_id", question_id, "bank_id")

    def list_by_bank(self, bank_id: int, topic_ids: Optional[Sequence[int]] = None,
                     question_type: Optional[models.QuestionType] = None,
                     search: Optional[str] = None) -> List[Tuple[models.Question, models.BankQuestion]]:
        stmt = (
            select(models.Question, models.BankQuestion)
            .join(models.BankQuestion, models.BankQuestion.question_id == models.Question.id)
            .where(models.BankQuestion.bank_id == bank_id)
        )
        if topic_ids:
            tagged = select(models.TopicQuestion.question_id).where(
                col(models.TopicQuestion.topic_id).in_(list(topic_ids))
            )
            stmt = stmt.where(col(models.Question.id).in_(tagged))
        if question_type:
            stmt = stmt.where(models.Question.type == question_type)
        if search:
            stmt = stmt.where(col(models.Question.question).ilike(_like(search)))
        stmt = stmt.order_by(models.BankQuestion.order_index, models.Question.id)
        return list(self.session.exec(stmt).all())

    def exists_in_bank_by_text(self, bank_id: int, text: str) -> bool:
        """Return True if the bank already holds a question with the same text."""
        stmt = (
            select(models.Question.id)
            .join(models.BankQuestion, models.BankQuestion.question_id == models.Question.id)
            .where(models.BankQuestion.bank_id == bank_id, models.Question.question == text)
        )
        return self.session.exec(stmt).first() is not None

    def topic_ids(self, question_id: int) -> List[int]:
        return self._linked_ids(models.TopicQuestion, "question_id", question_id, "topic_id")

    def set_topics(self, question_id: int, topic_ids: Iterable[int]) -> None:
        self._replace_links(models.TopicQuestion, {"question_id": question_id}, "topic_id", topic_ids)


class QuizRepository(_Repository):
    """Quizzes, their associations and evaluation settings."""

    _LINKS = {
        "courses": (models.CourseQuiz, "course_id"),
        "students": (models.StudentQuiz, "student_id"),
        "labs": (models.LabQuiz, "lab_id"),
        "batches": (models.QuizBatch, "batch_id"),
        "tags": (models.QuizQuizTag, "tag_id"),
    }

    def get(self, quiz_id: int) -> Optional[models.Quiz]:
        return self.session.get(models.Quiz, quiz_id)

    def linked_ids(self, quiz_id: int, kind: str) -> List[int]:
        model, field = self._LINKS[kind]
        return self._linked_ids(model, "quiz_id", quiz_id, field)

    def replace_links(self, quiz_id: int, kind: str, ids: Iterable[int]) -> None:
        model, field = self._LINKS[kind]
        self._replace_links(model, {"quiz_id": quiz_id}, field, ids)

    def is_assigned_student(self, quiz_id: int, student_id: int) -> bool:
        return self._link_exists(models.StudentQuiz, quiz_id=quiz_id, student_id=student_id)

    def is_assigned_batch(self, quiz_id: int, batch_ids: Sequence[int]) -> bool:
        if not batch_ids:
            return False
        stmt = select(models.QuizBatch).where(
            models.QuizBatch.quiz_id == quiz_id, col(models.QuizBatch.batch_id).in_(list(batch_ids))
        )
        return self.session.exec(stmt).first() is not None

    def quiz_ids_for_course(self, course_id: int) -> List[int]:
        return self._linked_ids(models.CourseQuiz, "course_id", course_id, "quiz_id")

    def list_for_courses(self, course_ids: Sequence[int], published_only: bool = False,
                         search: Optional[str] = None) -> List[Tuple[models.Quiz, int]]:
        """Return `(quiz, course_id)` pairs for quizzes linked to any of `course_ids`."""
        if not course_ids:
            return []
        stmt = (
            select(models.Quiz, models.CourseQuiz.course_id)
            .join(models.CourseQuiz, models.CourseQuiz.quiz_id == models.Quiz.id)
            .where(col(models.CourseQuiz.course_id).in_(list(course_ids)))
        )
        if published_only:
            stmt = stmt.where(models.Quiz.publish_quiz == True)  # noqa: E712
        if search:
            stmt = stmt.where(
                col(models.Quiz.name).ilike(_like(search)) | col(models.Quiz.description).ilike(_like(search))
            )
        stmt = stmt.order_by(col(models.Quiz.start_time).desc(), col(models.Quiz.id).desc())
        return list(self.session.exec(stmt).all())

    # tags
    def get_or_create_tags(self, names: Iterable[str]) -> List[models.QuizTag]:
        tags = []
        for name in dict.fromkeys(n.strip() for n in names if n and n.strip()):
            tag = self.session.exec(select(models.QuizTag).where(models.QuizTag.name == name)).first()
            if not tag:
                tag = models.QuizTag(name=name)
                self.session.add(tag)
                self.session.commit()
                self.session.refresh(tag)
            tags.append(tag)
        return tags

    def tag_names(self, quiz_id: int) -> List[str]:
        stmt = (
            select(models.QuizTag.name)
            .join(models.QuizQuizTag, models.QuizQuizTag.tag_id == models.QuizTag.id)
            .where(models.QuizQuizTag.quiz_id == quiz_id)
            .order_by(models.QuizTag.name)
        )
        return list(self.session.exec(stmt).all())

    # evaluation settings
    def get_settings(self, quiz_id: int) -> Optional[models.QuizEvaluationSettings]:
        return self.session.get(models.QuizEvaluationSettings, quiz_id)


class SectionRepository(_Repository):
    def get(self, section_id: int) -> Optional[models.QuizSection]:
        return self.session.get(models.QuizSection, section_id)

    def list_by_quiz(self, quiz_id: int) -> List[models.QuizSection]:
        stmt = (
            select(models.QuizSection)
            .where(models.QuizSection.quiz_id == quiz_id)
            .order_by(models.QuizSection.order_index, models.QuizSection.id)
        )
        return list(self.session.exec(stmt).all())

    def next_order_index(self, quiz_id: int) -> int:
        stmt = select(func.max(models.QuizSection.order_index)).where(models.QuizSection.quiz_id == quiz_id)
        current = self.session.exec(stmt).one()
        return 0 if current is None else int(current) + 1


class QuizQuestionRepository(_Repository):
    """Question placements inside quizzes."""

    def get(self, quiz_question_id: int) -> Optional[models.QuizQuestion]:
        return self.session.get(models.QuizQuestion, quiz_question_id)

    def list_for_quiz(self, quiz_id: int, section_id: Optional[int] = None,
                      only_section: bool = False) -> List[Tuple[models.QuizQuestion, models.Question]]:
        stmt = (
            select(models.QuizQuestion, models.Question)
            .join(models.Question, models.Question.id == models.QuizQuestion.question_id)
            .where(models.QuizQuestion.quiz_id == quiz_id)
        )
        if only_section:
            if section_id is None:
                stmt = stmt.where(col(models.QuizQuestion.section_id).is_(None))
            else:
                stmt = stmt.where(models.QuizQuestion.section_id == section_id)
        stmt = stmt.order_by(models.QuizQuestion.order_index, models.QuizQuestion.id)
        return list(self.session.exec(stmt).all())

    def list_in_group(self, quiz_id: int, section_id: Optional[int]) -> List[models.QuizQuestion]:
        stmt = select(models.QuizQuestion).where(models.QuizQuestion.quiz_id == quiz_id)
        if section_id is None:
            stmt = stmt.where(col(models.QuizQuestion.section_id).is_(None))
        else:
            stmt = stmt.where(models.QuizQuestion.section_id == section_id)
        stmt = stmt.order_by(models.QuizQuestion.order_index, models.QuizQuestion.id)
        return list(self.session.exec(stmt).all())

    def count_in_section(self, section_id: int) -> int:
        stmt = select(func.count()).select_from(models.QuizQuestion).where(models.QuizQuestion.section_id == section_id)
        return int(self.session.exec(stmt).one())

    def next_order_index(self, quiz_id: int, section_id: Optional[int] = None, any_section: bool = False) -> int:
        """Next free order_index in the quiz (or only within one section group)."""
        stmt = select(func.max(models.QuizQuestion.order_index)).where(models.QuizQuestion.quiz_id == quiz_id)
        if not any_section:
            if section_id is None:
                stmt = stmt.where(col(models.QuizQuestion.section_id).is_(None))
            else:
                stmt = stmt.where(models.QuizQuestion.section_id == section_id)
        current = self.session.exec(stmt).one()
        return 0 if current is None else int(current) + 1

    def bank_question_ids(self, quiz_id: int) -> List[int]:
        stmt = select(models.QuizQuestion.bank_question_id).where(
            models.QuizQuestion.quiz_id == quiz_id, col(models.QuizQuestion.bank_question_id).is_not(None)
        )
        return list(self.session.exec(stmt).all())

    def add_many(self, links: List[models.QuizQuestion]) -> List[models.QuizQuestion]:
        for link in links:
            self.session.add(link)
        self.session.commit()
        for link in links:
            self.session.refresh(link)
        return links

    def total_marks(self, quiz_id: int) -> float:
        stmt = (
            select(func.coalesce(func.sum(models.Question.marks), 0))
            .join(models.QuizQuestion, models.QuizQuestion.question_id == models.Question.id)
            .where(models.QuizQuestion.quiz_id == quiz_id)
        )
        return float(self.session.exec(stmt).one())


class ResponseRepository(_Repository):
    """Student quiz responses (attempts)."""

    def get(self, quiz_id: int, student_id: int) -> Optional[models.QuizResponse]:
        return self.session.get(models.QuizResponse, (quiz_id, student_id))

    def list_for_quiz(self, quiz_id: int,
                      statuses: Optional[Sequence[models.SubmissionStatus]] = None) -> List[Tuple[models.QuizResponse, models.User]]:
        stmt = (
            select(models.QuizResponse, models.User)
            .join(models.User, models.User.id == models.QuizResponse.student_id)
            .where(models.QuizResponse.quiz_id == quiz_id)
        )
        if statuses:
            stmt = stmt.where(col(models.QuizResponse.submission_status).in_(list(statuses)))
        return list(self.session.exec(stmt.order_by(models.User.name)).all())

    def list_expired_open(self, now: datetime) -> List[models.QuizResponse]:
        """NOT_SUBMITTED responses past their end_time on quizzes with auto_submit on."""
        stmt = (
            select(models.QuizResponse)
            .join(models.Quiz, models.Quiz.id == models.QuizResponse.quiz_id)
            .where(
                models.QuizResponse.submission_status == models.SubmissionStatus.NOT_SUBMITTED,
                col(models.QuizResponse.end_time).is_not(None),
                col(models.QuizResponse.end_time) < now,
                models.Quiz.auto_submit == True,  # noqa: E712
            )
        )
        return list(self.session.exec(stmt).all())

    def mark_auto_submitted(self, response: models.QuizResponse, now: datetime) -> bool:
        """Flip one open attempt to AUTO_SUBMITTED; False when it was submitted meanwhile.

        The status check runs in the UPDATE itself, so a concurrent submit wins.
        Does not commit.
        """
        stmt = (
            update(models.QuizResponse)
            .where(
                models.QuizResponse.quiz_id == response.quiz_id,
                models.QuizResponse.student_id == response.student_id,
                models.QuizResponse.submission_status == models.SubmissionStatus.NOT_SUBMITTED,
            )
            .values(
                submission_status=models.SubmissionStatus.AUTO_SUBMITTED,
                submission_time=response.end_time,
                updated_at=now,
            )
            .execution_options(synchronize_session=False)
        )
        return self.session.execute(stmt).rowcount == 1
