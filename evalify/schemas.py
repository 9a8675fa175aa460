"""Pydantic request schemas used by the API.

Schemas keep API input shapes stable and provide validation for
controller handlers and tests. Field names are snake_case, except for the
nested per-question-type payloads (options, blank configs, test cases...)
which are persisted as JSON documents and keep their camelCase keys.
"""

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from .models import (
    BloomLevel, CourseOutcome, CourseType, Difficulty, QuestionType, Role, Status, UserStatus,
)
from .utils.ip import is_valid_subnet


class LoginIn(BaseModel):
    """Payload for the login endpoint."""
    email: str
    password: str


class TokenOut(BaseModel):
    """Authentication response containing an access token."""
    access_token: str
    role: Role


class ChangePasswordIn(BaseModel):
    current_password: str
    new_password: str


# users

class UserCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    email: str = Field(min_length=3, max_length=255)
    profile_id: str = Field(min_length=1, max_length=64)
    password: str = Field(min_length=6)
    role: Role = Role.STUDENT
    phone: Optional[str] = None
    status: UserStatus = UserStatus.ACTIVE


class UserUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    email: Optional[str] = None
    profile_id: Optional[str] = None
    password: Optional[str] = Field(default=None, min_length=6)
    role: Optional[Role] = None
    phone: Optional[str] = None
    status: Optional[UserStatus] = None


class ProfileUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    phone: Optional[str] = None
    theme: Optional[Literal["light", "dark", "system"]] = None
    view: Optional[Literal["list", "grid"]] = None


# academic structure

class DepartmentIn(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    is_active: Status = Status.ACTIVE


class DepartmentUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    is_active: Optional[Status] = None


class SemesterIn(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    year: int = Field(ge=1900, le=3000)
    department_id: int
    is_active: Status = Status.ACTIVE


class SemesterUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    year: Optional[int] = Field(default=None, ge=1900, le=3000)
    department_id: Optional[int] = None
    is_active: Optional[Status] = None


class SemesterBulkIn(BaseModel):
    items: List[SemesterIn] = Field(min_length=1)


class ManagerIn(BaseModel):
    manager_id: int


class BatchIn(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    join_year: int
    graduation_year: int
    section: str = Field(min_length=1, max_length=16)
    department_id: int
    is_active: Status = Status.ACTIVE


class BatchUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    join_year: Optional[int] = None
    graduation_year: Optional[int] = None
    section: Optional[str] = None
    department_id: Optional[int] = None
    is_active: Optional[Status] = None


class StudentIdsIn(BaseModel):
    student_ids: List[int] = Field(min_length=1)


class CourseIn(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: str = ""
    code: str = Field(min_length=1, max_length=50)
    image: Optional[str] = None
    type: CourseType = CourseType.CORE
    semester_id: int
    is_active: Status = Status.ACTIVE


class CourseUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    code: Optional[str] = Field(default=None, min_length=1, max_length=50)
    image: Optional[str] = None
    type: Optional[CourseType] = None
    semester_id: Optional[int] = None
    is_active: Optional[Status] = None


class CourseBulkIn(BaseModel):
    items: List[CourseIn] = Field(min_length=1)


class CodesIn(BaseModel):
    codes: List[str]


class StudentIdIn(BaseModel):
    student_id: int


class InstructorIdIn(BaseModel):
    instructor_id: int


class BatchIdIn(BaseModel):
    batch_id: int


class LabIn(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    block: str = Field(min_length=1, max_length=100)
    ip_subnet: str
    is_active: Status = Status.ACTIVE

    @field_validator("ip_subnet")
    @classmethod
    def _check_subnet(cls, v: str) -> str:
        if not is_valid_subnet(v):
            raise ValueError("Invalid IP subnet format (expected e.g. 192.168.1.0/24)")
        return v.strip()


class LabUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    block: Optional[str] = Field(default=None, min_length=1, max_length=100)
    ip_subnet: Optional[str] = None
    is_active: Optional[Status] = None

    @field_validator("ip_subnet")
    @classmethod
    def _check_subnet(cls, v: Optional[str]) -> Optional[str]:
        if v is not None and not is_valid_subnet(v):
            raise ValueError("Invalid IP subnet format (expected e.g. 192.168.1.0/24)")
        return v.strip() if v else v


# banks & questions

class BankIn(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    course_code: Optional[str] = None
    semester: Optional[int] = Field(default=None, ge=1, le=12)


class BankUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    course_code: Optional[str] = None
    semester: Optional[int] = Field(default=None, ge=1, le=12)


class ShareIn(BaseModel):
    user_ids: List[int] = Field(min_length=1)
    access_level: Literal["READ", "WRITE"] = "READ"


class AccessLevelIn(BaseModel):
    access_level: Literal["READ", "WRITE"]


class TopicIn(BaseModel):
    name: str = Field(min_length=1, max_length=255)


class OptionIn(BaseModel):
    id: str
    optionText: str
    orderIndex: int
    marksWeightage: Optional[float] = None


class QuestionDataIn(BaseModel):
    options: List[OptionIn] = Field(min_length=2)


class CorrectOptionIn(BaseModel):
    id: str
    isCorrect: bool


class SolutionIn(BaseModel):
    correctOptions: List[CorrectOptionIn] = Field(min_length=1)


class AcceptableAnswerIn(BaseModel):
    answers: List[str]
    type: Literal["TEXT", "NUMBER", "UPPERCASE", "LOWERCASE"] = "TEXT"


class BlankConfigIn(BaseModel):
    blankCount: int = Field(ge=1)
    acceptableAnswers: Dict[str, AcceptableAnswerIn]
    blankWeights: Dict[str, float] = Field(default_factory=dict)
    evaluationType: Literal["NORMAL", "STRICT", "HYBRID"] = "NORMAL"


class DescriptiveConfigIn(BaseModel):
    modelAnswer: Optional[str] = None
    keywords: Optional[List[str]] = None
    minWords: Optional[int] = Field(default=None, ge=0)
    maxWords: Optional[int] = Field(default=None, ge=0)

    @model_validator(mode="after")
    def _check_bounds(self):
        if self.minWords is not None and self.maxWords is not None and self.minWords > self.maxWords:
            raise ValueError("Minimum words must be less than or equal to maximum words")
        return self


class MatchOptionIn(BaseModel):
    id: str
    isLeft: bool
    text: str
    orderIndex: int
    matchPairIds: Optional[List[str]] = None


class CodingConfigIn(BaseModel):
    language: str = "PYTHON"
    templateCode: Optional[str] = None
    boilerplateCode: Optional[str] = None
    timeLimitMs: Optional[int] = Field(default=None, gt=0)
    memoryLimitMb: Optional[int] = Field(default=None, gt=0)


class TestCaseIn(BaseModel):
    id: str
    input: str = ""
    expectedOutput: str = ""
    visibility: Literal["VISIBLE", "HIDDEN"] = "VISIBLE"
    marksWeightage: Optional[float] = None
    orderIndex: int = 0


class FileUploadConfigIn(BaseModel):
    allowedFileTypes: Optional[List[str]] = None
    maxFileSizeInMB: Optional[float] = Field(default=None, gt=0)
    maxFiles: Optional[int] = Field(default=None, gt=0)


class _QuestionTypePayload(BaseModel):
    """Per-type payload shared by create and update requests."""
    question_data: Optional[QuestionDataIn] = None
    solution: Optional[SolutionIn] = None
    true_false_answer: Optional[bool] = None
    blank_config: Optional[BlankConfigIn] = None
    descriptive_config: Optional[DescriptiveConfigIn] = None
    options: Optional[List[MatchOptionIn]] = None
    coding_config: Optional[CodingConfigIn] = None
    test_cases: Optional[List[TestCaseIn]] = None
    reference_solution: Optional[str] = None
    file_upload_config: Optional[FileUploadConfigIn] = None
    attached_files: Optional[List[str]] = None


class QuestionIn(_QuestionTypePayload):
    type: QuestionType
    question: str = Field(min_length=1, max_length=5000)
    marks: float = Field(default=1, gt=0)
    negative_marks: float = Field(default=0, ge=0)
    difficulty: Optional[Difficulty] = None
    course_outcome: Optional[CourseOutcome] = None
    bloom_level: Optional[BloomLevel] = None
    topic_ids: Optional[List[int]] = None
    explanation: Optional[str] = None


class QuestionUpdate(_QuestionTypePayload):
    type: Optional[QuestionType] = None
    question: Optional[str] = Field(default=None, min_length=1, max_length=5000)
    marks: Optional[float] = Field(default=None, gt=0)
    negative_marks: Optional[float] = Field(default=None, ge=0)
    difficulty: Optional[Difficulty] = None
    course_outcome: Optional[CourseOutcome] = None
    bloom_level: Optional[BloomLevel] = None
    topic_ids: Optional[List[int]] = None
    explanation: Optional[str] = None


class QuizQuestionIn(QuestionIn):
    section_id: Optional[int] = None


# quizzes

class EvaluationSettingsIn(BaseModel):
    mcq_global_partial_marking: Optional[bool] = None
    mcq_global_negative_mark: Optional[float] = Field(default=None, ge=0)
    mcq_global_negative_percent: Optional[float] = Field(default=None, ge=0, le=100)
    coding_global_partial_marking: Optional[bool] = None
    llm_evaluation_enabled: Optional[bool] = None
    llm_provider: Optional[str] = None
    llm_model_name: Optional[str] = None
    fitb_llm_system_prompt: Optional[str] = None
    desc_llm_system_prompt: Optional[str] = None


class QuizCreate(BaseModel):
    name: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    instructions: Optional[str] = None
    start_time: datetime
    end_time: datetime
    duration_minutes: int = Field(gt=0)
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
    course_ids: List[int] = Field(default_factory=list)
    student_ids: List[int] = Field(default_factory=list)
    lab_ids: List[int] = Field(default_factory=list)
    batch_ids: List[int] = Field(default_factory=list)
    tags: List[str] = Field(default_factory=list)
    evaluation_settings: Optional[EvaluationSettingsIn] = None


class QuizUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = None
    instructions: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration_minutes: Optional[int] = Field(default=None, gt=0)
    password: Optional[str] = None
    full_screen: Optional[bool] = None
    shuffle_questions: Optional[bool] = None
    shuffle_options: Optional[bool] = None
    linear_quiz: Optional[bool] = None
    calculator: Optional[bool] = None
    auto_submit: Optional[bool] = None
    publish_result: Optional[bool] = None
    publish_quiz: Optional[bool] = None
    kiosk_mode: Optional[bool] = None
    course_ids: Optional[List[int]] = None
    student_ids: Optional[List[int]] = None
    lab_ids: Optional[List[int]] = None
    batch_ids: Optional[List[int]] = None
    tags: Optional[List[str]] = None
    evaluation_settings: Optional[EvaluationSettingsIn] = None


class SectionIn(BaseModel):
    name: str = Field(min_length=1, max_length=255)


class ReorderIn(BaseModel):
    ordered_ids: List[int]


class QuestionReorderIn(BaseModel):
    section_id: Optional[int] = None
    ordered_ids: List[int]


class MoveQuestionIn(BaseModel):
    target_section_id: Optional[int] = None


class FromBankIn(BaseModel):
    bank_question_ids: List[int] = Field(min_length=1)
    section_id: Optional[int] = None


# exam

class StartQuizIn(BaseModel):
    password: Optional[str] = None


class SaveAnswerIn(BaseModel):
    """Partial response keyed by question id: `{"12": {"studentAnswer": ...}}`."""
    response: Dict[str, Any]


class ViolationIn(BaseModel):
    violation: str = Field(min_length=1, max_length=500)


class SaveEvaluationIn(BaseModel):
    score: float
    total_score: float
    evaluation_results: Dict[str, Any]


class QuestionScoreIn(BaseModel):
    mark: Optional[float] = None
    remarks: Optional[str] = None
