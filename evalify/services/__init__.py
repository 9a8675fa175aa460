"""Business logic services used by HTTP controllers.

Services coordinate repositories and enforce the domain rules: access
checks, validation and state transitions. They raise the exceptions from
`evalify.errors` (all `ValueError` subclasses) and never build HTTP
responses themselves.
"""

from .academics import (
    BatchService, CourseService, DepartmentService, LabService, SemesterService, UserService,
)
from .auth import AuthService, create_access_token, hash_password
from .banks import BankService, QuestionService, TopicService, build_question_payload
from .evaluation import EvaluationService, evaluate_response, normalize_student_answer, score_question
from .exam import ExamService, StudentQuizService, student_question_view, student_status
from .quizzes import QuizQuestionService, QuizService, SectionService

__all__ = [
    "AuthService", "BankService", "BatchService", "CourseService", "DepartmentService",
    "EvaluationService", "ExamService", "LabService", "QuestionService", "QuizQuestionService",
    "QuizService", "SectionService", "SemesterService", "StudentQuizService", "TopicService",
    "UserService", "build_question_payload", "create_access_token", "evaluate_response",
    "hash_password", "normalize_student_answer", "score_question", "student_question_view",
    "student_status",
]
