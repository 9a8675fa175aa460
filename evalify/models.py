"""SQLModel data models.

This module defines the application's database tables using SQLModel.
Each class maps to a table. Many-to-many associations (course students,
quiz batches, bank shares, ...) are plain link tables with a composite
primary key so that duplicate links are impossible.

All timestamps are stored as naive UTC datetimes in plain SQLAlchemy
`DateTime` columns; use `utcnow()` when comparing against stored values.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import Optional
from sqlalchemy import Column, DateTime, JSON, Text, UniqueConstraint
from sqlmodel import SQLModel, Field


def utcnow() -> datetime:
    """Current time as a naive UTC datetime (the storage convention)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC already."""
    if value is None or value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


class Role(str, Enum):
    ADMIN = "ADMIN"
    MANAGER = "MANAGER"
    FACULTY = "FACULTY"
    STUDENT = "STUDENT"


class UserStatus(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"
    SUSPENDED = "SUSPENDED"


class Status(str, Enum):
    ACTIVE = "ACTIVE"
    INACTIVE = "INACTIVE"


class CourseType(str, Enum):
    CORE = "CORE"
    ELECTIVE = "ELECTIVE"
    MICRO_CREDENTIAL = "MICRO_CREDENTIAL"


class QuestionType(str, Enum):
    MCQ = "MCQ"
    MMCQ = "MMCQ"
    TRUE_FALSE = "TRUE_FALSE"
    DESCRIPTIVE = "DESCRIPTIVE"
    FILL_THE_BLANK = "FILL_THE_BLANK"
    MATCHING = "MATCHING"
    FILE_UPLOAD = "FILE_UPLOAD"
    CODING = "CODING"


class Difficulty(str, Enum):
    EASY = "EASY"
    MEDIUM = "MEDIUM"
    HARD = "HARD"


class CourseOutcome(str, Enum):
    CO1 = "CO1"
    CO2 = "CO2"
    CO3 = "CO3"
    CO4 = "CO4"
    CO5 = "CO5"
    CO6 = "CO6"
    CO7 = "CO7"
    CO8 = "CO8"


class BloomLevel(str, Enum):
    REMEMBER = "REMEMBER"
    UNDERSTAND = "UNDERSTAND"
    APPLY = "APPLY"
    ANALYZE = "ANALYZE"
    EVALUATE = "EVALUATE"
    CREATE = "CREATE"


class BankAccess(str, Enum):
    READ = "READ"
    WRITE = "WRITE"
    # reported for bank creators, never stored in `bankuser`
    OWNER = "OWNER"


class SubmissionStatus(str, Enum):
    NOT_SUBMITTED = "NOT_SUBMITTED"
    SUBMITTED = "SUBMITTED"
    AUTO_SUBMITTED = "AUTO_SUBMITTED"


class EvaluationStatus(str, Enum):
    NOT_EVALUATED = "NOT_EVALUATED"
    EVALUATED = "EVALUATED"
    EVALUATED_MANUALLY = "EVALUATED_MANUALLY"
    FAILED = "FAILED"


class QuestionEvaluationStatus(str, Enum):
    UNEVALUATED = "UNEVALUATED"
    EVALUATED = "EVALUATED"
    EVALUATED_MANUALLY = "EVALUATED_MANUALLY"


class User(SQLModel, table=True):
    """A registered user of any role.

    Fields:
    - `email`: unique login name
    - `profile_id`: institutional id (roll number / staff id), unique
    - `password_hash`: hashed password string (never store plaintext)
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    email: str = Field(index=True, nullable=False, unique=True)
    profile_id: str = Field(index=True, nullable=False, unique=True)
    password_hash: str
    role: Role = Field(default=Role.STUDENT, index=True)
    phone: Optional[str] = None
    status: UserStatus = Field(default=UserStatus.ACTIVE, index=True)
    theme: str = "system"
    view: str = "grid"
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)


class Department(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True)
    is_active: Status = Field(default=Status.ACTIVE, index=True)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)


class Semester(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    year: int = Field(index=True)
    department_id: int = Field(foreign_key="department.id", index=True, ondelete="CASCADE")
    is_active: Status = Field(default=Status.ACTIVE, index=True)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)


class SemesterManager(SQLModel, table=True):
    semester_id: int = Field(foreign_key="semester.id", primary_key=True, ondelete="CASCADE")
    manager_id: int = Field(foreign_key="user.id", primary_key=True, ondelete="CASCADE")


class Batch(SQLModel, table=True):
    """A cohort of students, e.g. `CSE 2023-2027 A`."""
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    join_year: int
    graduation_year: int
    section: str
    department_id: int = Field(foreign_key="department.id", index=True, ondelete="CASCADE")
    is_active: Status = Field(default=Status.ACTIVE, index=True)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)


class BatchStudent(SQLModel, table=True):
    batch_id: int = Field(foreign_key="batch.id", primary_key=True, ondelete="CASCADE")
    student_id: int = Field(foreign_key="user.id", primary_key=True, ondelete="CASCADE")


class Course(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    description: str = ""
    code: str = Field(index=True, unique=True)
    image: Optional[str] = None
    type: CourseType = Field(default=CourseType.CORE, index=True)
    semester_id: int = Field(foreign_key="semester.id", index=True, ondelete="CASCADE")
    is_active: Status = Field(default=Status.ACTIVE, index=True)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)


class CourseStudent(SQLModel, table=True):
    course_id: int = Field(foreign_key="course.id", primary_key=True, ondelete="CASCADE")
    student_id: int = Field(foreign_key="user.id", primary_key=True, ondelete="CASCADE")


class CourseInstructor(SQLModel, table=True):
    course_id: int = Field(foreign_key="course.id", primary_key=True, ondelete="CASCADE")
    instructor_id: int = Field(foreign_key="user.id", primary_key=True, ondelete="CASCADE")


class CourseBatch(SQLModel, table=True):
    course_id: int = Field(foreign_key="course.id", primary_key=True, ondelete="CASCADE")
    batch_id: int = Field(foreign_key="batch.id", primary_key=True, ondelete="CASCADE")


class Lab(SQLModel, table=True):
    """A computer lab; `ip_subnet` is an IPv4 CIDR used for quiz gating."""
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    block: str = Field(index=True)
    ip_subnet: str
    is_active: Status = Field(default=Status.ACTIVE, index=True)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)


class Bank(SQLModel, table=True):
    """A reusable question bank owned by its creator."""
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    course_code: Optional[str] = None
    semester: Optional[int] = None
    created_by_id: int = Field(foreign_key="user.id", index=True, ondelete="CASCADE")
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)


class BankUser(SQLModel, table=True):
    bank_id: int = Field(foreign_key="bank.id", primary_key=True, ondelete="CASCADE")
    user_id: int = Field(foreign_key="user.id", primary_key=True, ondelete="CASCADE")
    access_level: BankAccess = Field(default=BankAccess.READ)


class Topic(SQLModel, table=True):
    __table_args__ = (UniqueConstraint("bank_id", "name"),)
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    bank_id: int = Field(foreign_key="bank.id", index=True, ondelete="CASCADE")
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)


class Question(SQLModel, table=True):
    """A question of any supported type.

    `question_data` holds what a student may see and `solution` what they
    may not; both are stored as `{"version": n, "data": {...}}`.
    """
    id: Optional[int] = Field(default=None, primary_key=True)
    type: QuestionType = Field(index=True)
    question: str = Field(sa_column=Column(Text, nullable=False))
    marks: float = 1
    negative_marks: float = 0
    difficulty: Optional[Difficulty] = None
    course_outcome: Optional[CourseOutcome] = None
    bloom_level: Optional[BloomLevel] = None
    question_data: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    solution: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    explanation: Optional[str] = None
    created_by_id: Optional[int] = Field(default=None, foreign_key="user.id", ondelete="SET NULL")
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)


class TopicQuestion(SQLModel, table=True):
    topic_id: int = Field(foreign_key="topic.id", primary_key=True, ondelete="CASCADE")
    question_id: int = Field(foreign_key="question.id", primary_key=True, ondelete="CASCADE")


class BankQuestion(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    bank_id: int = Field(foreign_key="bank.id", index=True, ondelete="CASCADE")
    question_id: int = Field(foreign_key="question.id", index=True, ondelete="CASCADE")
    order_index: Optional[int] = None


class Quiz(SQLModel, table=True):
    """A timed assessment. `duration_minutes` caps each attempt."""
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str
    description: Optional[str] = None
    instructions: Optional[str] = None
    start_time: datetime = Field(index=True, sa_type=DateTime)
    end_time: datetime = Field(index=True, sa_type=DateTime)
    duration_minutes: int
    password: Optional[str] = None
    full_screen: bool = False
    shuffle_questions: bool = False
    shuffle_options: bool = False
    linear_quiz: bool = False
    calculator: bool = False
    auto_submit: bool = False
    publish_result: bool = False
    publish_quiz: bool = False
    kiosk_mode: bool = False
    created_by_id: Optional[int] = Field(default=None, foreign_key="user.id", ondelete="SET NULL")
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)


class QuizSection(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    quiz_id: int = Field(foreign_key="quiz.id", index=True, ondelete="CASCADE")
    name: str
    order_index: int = 0


class QuizTag(SQLModel, table=True):
    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True, unique=True)


class QuizQuizTag(SQLModel, table=True):
    quiz_id: int = Field(foreign_key="quiz.id", primary_key=True, ondelete="CASCADE")
    tag_id: int = Field(foreign_key="quiztag.id", primary_key=True, ondelete="CASCADE")


class CourseQuiz(SQLModel, table=True):
    course_id: int = Field(foreign_key="course.id", primary_key=True, ondelete="CASCADE")
    quiz_id: int = Field(foreign_key="quiz.id", primary_key=True, ondelete="CASCADE")


class StudentQuiz(SQLModel, table=True):
    student_id: int = Field(foreign_key="user.id", primary_key=True, ondelete="CASCADE")
    quiz_id: int = Field(foreign_key="quiz.id", primary_key=True, ondelete="CASCADE")


class LabQuiz(SQLModel, table=True):
    lab_id: int = Field(foreign_key="lab.id", primary_key=True, ondelete="CASCADE")
    quiz_id: int = Field(foreign_key="quiz.id", primary_key=True, ondelete="CASCADE")


class QuizBatch(SQLModel, table=True):
    batch_id: int = Field(foreign_key="batch.id", primary_key=True, ondelete="CASCADE")
    quiz_id: int = Field(foreign_key="quiz.id", primary_key=True, ondelete="CASCADE")


class QuizQuestion(SQLModel, table=True):
    """Placement of a question inside a quiz (optionally inside a section)."""
    __table_args__ = (UniqueConstraint("quiz_id", "bank_question_id"),)
    id: Optional[int] = Field(default=None, primary_key=True)
    quiz_id: int = Field(foreign_key="quiz.id", index=True, ondelete="CASCADE")
    question_id: int = Field(foreign_key="question.id", index=True, ondelete="CASCADE")
    section_id: Optional[int] = Field(default=None, foreign_key="quizsection.id", ondelete="SET NULL")
    bank_question_id: Optional[int] = Field(default=None, foreign_key="bankquestion.id", ondelete="SET NULL")
    order_index: int = 0


class QuizEvaluationSettings(SQLModel, table=True):
    """Per-quiz scoring configuration, keyed by the quiz id.

    At most one of `mcq_global_negative_mark` / `mcq_global_negative_percent`
    may be set.
    """
    quiz_id: int = Field(foreign_key="quiz.id", primary_key=True, ondelete="CASCADE")
    mcq_global_partial_marking: bool = False
    mcq_global_negative_mark: Optional[float] = None
    mcq_global_negative_percent: Optional[float] = None
    coding_global_partial_marking: bool = False
    llm_evaluation_enabled: bool = False
    llm_provider: Optional[str] = None
    llm_model_name: Optional[str] = None
    fitb_llm_system_prompt: Optional[str] = None
    desc_llm_system_prompt: Optional[str] = None


class QuizResponse(SQLModel, table=True):
    """A student's attempt at a quiz; one row per (quiz, student)."""
    quiz_id: int = Field(foreign_key="quiz.id", primary_key=True, ondelete="CASCADE")
    student_id: int = Field(foreign_key="user.id", primary_key=True, ondelete="CASCADE")
    start_time: datetime = Field(sa_type=DateTime)
    end_time: Optional[datetime] = Field(default=None, index=True, sa_type=DateTime)
    submission_time: Optional[datetime] = Field(default=None, sa_type=DateTime)
    ip: Optional[list] = Field(default=None, sa_column=Column(JSON))
    duration_minutes: int
    response: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    score: Optional[float] = None
    total_score: Optional[float] = None
    evaluation_results: Optional[dict] = Field(default=None, sa_column=Column(JSON))
    violations: Optional[list] = Field(default=None, sa_column=Column(JSON))
    submission_status: SubmissionStatus = Field(default=SubmissionStatus.NOT_SUBMITTED, index=True)
    evaluation_status: EvaluationStatus = Field(default=EvaluationStatus.NOT_EVALUATED, index=True)
    created_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=DateTime)
