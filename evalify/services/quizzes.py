"""Quiz authoring: quizzes, sections and quiz questions.

Staff may manage a quiz when they instruct one of its courses or manage
the semester such a course belongs to. The quiz creator keeps access even
if later removed from the course.
"""

import json
import logging
from datetime import datetime
from typing import List, Optional

from sqlmodel import Session

from .. import models, repositories, schemas
from ..errors import ForbiddenError, NotFoundError
from ..serializers import course_out, lab_out, quiz_out, section_out, settings_out, user_brief
from .banks import QuestionService

logger = logging.getLogger("evalify.quizzes")

_LINK_FIELDS = {'course_ids': 'courses', 'student_ids': 'students', 'lab_ids': 'labs', 'batch_ids': 'batches'}


def quiz_window_status(quiz: models.Quiz, now: Optional[datetime] = None) -> str:
    now = now or models.utcnow()
    if now < quiz.start_time:
        return 'UPCOMING'
    if now > quiz.end_time:
        return 'COMPLETED'
    return 'ACTIVE'


def apply_evaluation_settings(session: Session, quiz_id: int,
                              patch: Optional[schemas.EvaluationSettingsIn]) -> models.QuizEvaluationSettings:
    """Create or merge the evaluation settings row of a quiz.

    Only fields present in `patch` change; explicit nulls clear a value.
    A fixed MCQ negative mark and a percentage one are mutually exclusive.
    """
    current = session.get(models.QuizEvaluationSettings, quiz_id) or models.QuizEvaluationSettings(quiz_id=quiz_id)
    changes = patch.model_dump(exclude_unset=True) if patch else {}
    for field, value in changes.items():
        if value is None and field in ('mcq_global_partial_marking', 'coding_global_partial_marking',
                                       'llm_evaluation_enabled'):
            value = False
        setattr(current, field, value)
    if current.mcq_global_negative_mark is not None and current.mcq_global_negative_percent is not None:
        session.rollback()
        raise ValueError("Cannot set both fixed and percentage negative marks")
    session.add(current)
    session.commit()
    session.refresh(current)
    return current


class QuizService:
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.QuizRepository(session)
        self.courses = repositories.CourseRepository(session)
        self.semesters = repositories.SemesterRepository(session)
        self.users = repositories.UserRepository(session)
        self.labs = repositories.LabRepository(session)
        self.batches = repositories.BatchRepository(session)
        self.questions = repositories.QuizQuestionRepository(session)

    # access
    def can_manage_course(self, user_id: int, course: models.Course) -> bool:
        if self.courses.is_instructor(course.id, user_id):
            return True
        return self.semesters.is_manager(course.semester_id, user_id)

    def require_course(self, user_id: int, course_id: int) -> models.Course:
        course = self.courses.get(course_id)
        if not course:
            raise NotFoundError("Course not found")
        if not self.can_manage_course(user_id, course):
            raise ForbiddenError("You don't have access to this course")
        return course

    def get_quiz(self, quiz_id: int) -> models.Quiz:
        quiz = self.repo.get(quiz_id)
        if not quiz:
            raise NotFoundError("Quiz not found")
        return quiz

    def require_quiz(self, user_id: int, quiz_id: int) -> models.Quiz:
        """Return the quiz if `user_id` may manage it."""
        quiz = self.get_quiz(quiz_id)
        if quiz.created_by_id == user_id:
            return quiz
        for course in self.courses.get_many(self.repo.linked_ids(quiz_id, 'courses')):
            if self.can_manage_course(user_id, course):
                return quiz
        raise ForbiddenError("You don't have access to this quiz")

    # validation
    @staticmethod
    def _check_window(start: datetime, end: datetime) -> None:
        if end <= start:
            raise ValueError("End time must be after start time")

    def _check_links(self, course_ids=None, student_ids=None, lab_ids=None, batch_ids=None) -> None:
        if course_ids and len(self.courses.get_many(course_ids)) != len(set(course_ids)):
            raise NotFoundError("One or more courses were not found")
        if student_ids:
            students = self.users.get_many(student_ids)
            if len(students) != len(set(student_ids)) or any(u.role != models.Role.STUDENT for u in students):
                raise ValueError("Only existing students can be assigned to a quiz")
        if lab_ids and len(self.labs.get_many(lab_ids)) != len(set(lab_ids)):
            raise NotFoundError("One or more labs were not found")
        if batch_ids and len(self.batches.get_many(batch_ids)) != len(set(batch_ids)):
            raise NotFoundError("One or more batches were not found")

    def _set_tags(self, quiz_id: int, names: List[str]) -> None:
        tags = self.repo.get_or_create_tags(names)
        self.repo.replace_links(quiz_id, 'tags', [t.id for t in tags])

    # operations
    def create(self, user_id: int, course_id: int, data: schemas.QuizCreate) -> dict:
        self.require_course(user_id, course_id)
        start, end = models.to_naive_utc(data.start_time), models.to_naive_utc(data.end_time)
        self._check_window(start, end)
        course_ids = list(dict.fromkeys([course_id] + data.course_ids))
        self._check_links(course_ids, data.student_ids, data.lab_ids, data.batch_ids)
        settings = data.evaluation_settings
        if settings and settings.mcq_global_negative_mark is not None and settings.mcq_global_negative_percent is not None:
            raise ValueError("Cannot set both fixed and percentage negative marks")

        fields = data.model_dump(exclude={'course_ids', 'student_ids', 'lab_ids', 'batch_ids', 'tags',
                                          'evaluation_settings', 'start_time', 'end_time'})
        quiz = models.Quiz(**fields, start_time=start, end_time=end, created_by_id=user_id)
        if not quiz.password:
            quiz.password = None
        quiz = self.repo.save(quiz)
        self.repo.replace_links(quiz.id, 'courses', course_ids)
        self.repo.replace_links(quiz.id, 'students', data.student_ids)
        self.repo.replace_links(quiz.id, 'labs', data.lab_ids)
        self.repo.replace_links(quiz.id, 'batches', data.batch_ids)
        self._set_tags(quiz.id, data.tags)
        apply_evaluation_settings(self.session, quiz.id, settings)
        logger.info("quiz_created %s", json.dumps({'quiz_id': quiz.id, 'course_id': course_id, 'user_id': user_id}))
        return self.detail(quiz)

    def update(self, user_id: int, quiz_id: int, data: schemas.QuizUpdate) -> dict:
        quiz = self.require_quiz(user_id, quiz_id)
        changes = data.model_dump(exclude_unset=True)
        start = models.to_naive_utc(changes.pop('start_time', None)) or quiz.start_time
        end = models.to_naive_utc(changes.pop('end_time', None)) or quiz.end_time
        self._check_window(start, end)
        links = {k: changes.pop(k) for k in list(changes) if k in _LINK_FIELDS}
        links = {k: v for k, v in links.items() if v is not None}
        self._check_links(**links)
        tags = changes.pop('tags', None)
        settings_patch = changes.pop('evaluation_settings', None)
        if settings_patch is not None:
            apply_evaluation_settings(self.session, quiz.id, data.evaluation_settings)

        quiz.start_time, quiz.end_time = start, end
        for field, value in changes.items():
            if field == 'password':
                quiz.password = value or None
            elif value is not None:
                setattr(quiz, field, value)
        quiz.updated_at = models.utcnow()
        quiz = self.repo.save(quiz)
        for field, ids in links.items():
            self.repo.replace_links(quiz.id, _LINK_FIELDS[field], ids)
        if tags is not None:
            self._set_tags(quiz.id, tags)
        logger.info("quiz_updated %s", json.dumps({'quiz_id': quiz.id, 'user_id': user_id}))
        return self.detail(quiz)

    def delete(self, user_id: int, quiz_id: int) -> None:
        quiz = self.require_quiz(user_id, quiz_id)
        self.repo.delete(quiz)
        logger.info("quiz_deleted %s", json.dumps({'quiz_id': quiz_id, 'user_id': user_id}))

    def detail(self, quiz: models.Quiz) -> dict:
        out = quiz_out(quiz)
        for field, kind in _LINK_FIELDS.items():
            out[field] = self.repo.linked_ids(quiz.id, kind)
        out['tags'] = self.repo.tag_names(quiz.id)
        settings = self.repo.get_settings(quiz.id)
        out['evaluation_settings'] = settings_out(settings) if settings else None
        out['question_count'] = len(self.questions.list_for_quiz(quiz.id))
        out['total_marks'] = self.questions.total_marks(quiz.id)
        return out

    def get(self, user_id: int, quiz_id: int) -> dict:
        return self.detail(self.require_quiz(user_id, quiz_id))

    def list_by_course(self, user_id: int, course_id: int, search: Optional[str] = None, status: str = 'ALL',
                       limit: int = 12, offset: int = 0) -> dict:
        self.require_course(user_id, course_id)
        now = models.utcnow()
        rows = []
        for quiz, _ in self.repo.list_for_courses([course_id], search=search):
            quiz_status = quiz_window_status(quiz, now)
            if status and status != 'ALL' and quiz_status != status:
                continue
            rows.append((quiz, quiz_status))
        offset, limit = max(0, offset), max(1, min(limit, 100))
        window = rows[offset:offset + limit]
        quizzes = []
        for quiz, quiz_status in window:
            item = quiz_out(quiz)
            item['status'] = quiz_status
            item['tags'] = self.repo.tag_names(quiz.id)
            quizzes.append(item)
        return {'quizzes': quizzes, 'total': len(rows), 'hasMore': offset + len(window) < len(rows)}

    def get_course_info(self, user_id: int, course_id: int) -> dict:
        course = self.require_course(user_id, course_id)
        out = course_out(course)
        semester = self.semesters.get(course.semester_id)
        out['semester'] = {'id': semester.id, 'name': semester.name, 'year': semester.year} if semester else None
        out['instructors'] = [user_brief(u) for u in self.users.get_many(self.courses.instructor_ids(course.id))]
        out['student_count'] = len(self.courses.student_ids(course.id))
        out['quiz_count'] = len(self.repo.quiz_ids_for_course(course.id))
        out['labs'] = [lab_out(lab) for lab in self.labs.list(is_active=models.Status.ACTIVE, limit=200)[0]]
        return out


class SectionService:
    """Ordered sections inside a quiz."""
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.SectionRepository(session)
        self.questions = repositories.QuizQuestionRepository(session)
        self.quizzes = QuizService(session)

    def _section(self, quiz_id: int, section_id: int) -> models.QuizSection:
        section = self.repo.get(section_id)
        if not section or section.quiz_id != quiz_id:
            raise NotFoundError("Section not found")
        return section

    def list_by_quiz(self, user_id: int, quiz_id: int) -> List[dict]:
        self.quizzes.require_quiz(user_id, quiz_id)
        return [section_out(s, self.questions.count_in_section(s.id)) for s in self.repo.list_by_quiz(quiz_id)]

    def create(self, user_id: int, quiz_id: int, name: str) -> dict:
        self.quizzes.require_quiz(user_id, quiz_id)
        section = models.QuizSection(quiz_id=quiz_id, name=name.strip(),
                                     order_index=self.repo.next_order_index(quiz_id))
        return section_out(self.repo.save(section), 0)

    def update_name(self, user_id: int, quiz_id: int, section_id: int, name: str) -> dict:
        self.quizzes.require_quiz(user_id, quiz_id)
        section = self._section(quiz_id, section_id)
        section.name = name.strip()
        return section_out(self.repo.save(section))

    def delete(self, user_id: int, quiz_id: int, section_id: int) -> None:
        """Delete a section; its questions move to the end of the unsectioned group."""
        self.quizzes.require_quiz(user_id, quiz_id)
        section = self._section(quiz_id, section_id)
        next_index = self.questions.next_order_index(quiz_id, None)
        for offset, link in enumerate(self.questions.list_in_group(quiz_id, section_id)):
            link.section_id = None
            link.order_index = next_index + offset
            self.session.add(link)
        self.session.commit()
        self.repo.delete(section)

    def reorder_sections(self, user_id: int, quiz_id: int, ordered_ids: List[int]) -> List[dict]:
        self.quizzes.require_quiz(user_id, quiz_id)
        sections = {s.id: s for s in self.repo.list_by_quiz(quiz_id)}
        for sid in ordered_ids:
            if sid not in sections:
                raise ValueError(f"Section {sid} does not belong to this quiz")
        for index, sid in enumerate(ordered_ids):
            sections[sid].order_index = index
            self.session.add(sections[sid])
        self.session.commit()
        return [section_out(s) for s in self.repo.list_by_quiz(quiz_id)]

    def reorder_questions(self, user_id: int, quiz_id: int, section_id: Optional[int], ordered_ids: List[int]) -> None:
        self.quizzes.require_quiz(user_id, quiz_id)
        if section_id is not None:
            self._section(quiz_id, section_id)
        group = {link.id: link for link in self.questions.list_in_group(quiz_id, section_id)}
        for qid in ordered_ids:
            if qid not in group:
                raise ValueError(f"Question {qid} is not in this section")
        for index, qid in enumerate(ordered_ids):
            group[qid].order_index = index
            self.session.add(group[qid])
        self.session.commit()

    def move_question(self, user_id: int, quiz_id: int, quiz_question_id: int,
                      target_section_id: Optional[int]) -> None:
        self.quizzes.require_quiz(user_id, quiz_id)
        link = self.questions.get(quiz_question_id)
        if not link or link.quiz_id != quiz_id:
            raise NotFoundError("Quiz question not found")
        if target_section_id is not None:
            self._section(quiz_id, target_section_id)
        link.order_index = self.questions.next_order_index(quiz_id, target_section_id)
        link.section_id = target_section_id
        self.questions.save(link)


class QuizQuestionService:
    """Questions placed in a quiz, either authored inline or taken from a bank."""
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.QuizQuestionRepository(session)
        self.sections = repositories.SectionRepository(session)
        self.bank_questions = repositories.QuestionRepository(session)
        self.quizzes = QuizService(session)
        self.question_service = QuestionService(session)

    def _check_section(self, quiz_id: int, section_id: Optional[int]) -> None:
        if section_id is None:
            return
        section = self.sections.get(section_id)
        if not section or section.quiz_id != quiz_id:
            raise NotFoundError("Section not found")

    def list_for_quiz(self, user_id: int, quiz_id: int) -> List[dict]:
        self.quizzes.require_quiz(user_id, quiz_id)
        section_order = {s.id: s.order_index for s in self.sections.list_by_quiz(quiz_id)}
        rows = self.repo.list_for_quiz(quiz_id)
        # unsectioned questions come first
        rows.sort(key=lambda r: (r[0].section_id is not None, section_order.get(r[0].section_id, -1),
                                 r[0].order_index, r[0].id))
        out = []
        for link, question in rows:
            item = self.question_service.detail(question)
            item.update({
                'quiz_question_id': link.id,
                'section_id': link.section_id,
                'order_index': link.order_index,
                'bank_question_id': link.bank_question_id,
            })
            out.append(item)
        return out

    def create_for_quiz(self, user_id: int, quiz_id: int, data: schemas.QuizQuestionIn) -> dict:
        self.quizzes.require_quiz(user_id, quiz_id)
        self._check_section(quiz_id, data.section_id)
        question = self.question_service.create(data, user_id)
        link = self.repo.save(models.QuizQuestion(
            quiz_id=quiz_id,
            question_id=question.id,
            section_id=data.section_id,
            order_index=self.repo.next_order_index(quiz_id, data.section_id),
        ))
        out = self.question_service.detail(question)
        out.update({'quiz_question_id': link.id, 'section_id': link.section_id, 'order_index': link.order_index})
        return out

    def add_from_bank(self, user_id: int, quiz_id: int, bank_question_ids: List[int],
                      section_id: Optional[int] = None) -> dict:
        self.quizzes.require_quiz(user_id, quiz_id)
        self._check_section(quiz_id, section_id)
        wanted = list(dict.fromkeys(bank_question_ids))
        found = {bq.id: bq for bq in self.bank_questions.get_bank_questions(wanted)}
        missing = [i for i in wanted if i not in found]
        if missing:
            raise NotFoundError(f"Bank questions not found: {missing}")
        for bank_id in {bq.bank_id for bq in found.values()}:
            self.question_service.banks.require_access(bank_id, user_id)

        existing = set(self.repo.bank_question_ids(quiz_id))
        fresh = [found[i] for i in wanted if i not in existing]
        if not fresh:
            raise ValueError("All selected questions are already in the quiz")
        start = self.repo.next_order_index(quiz_id, section_id)
        links = [
            models.QuizQuestion(quiz_id=quiz_id, question_id=bq.question_id, bank_question_id=bq.id,
                                section_id=section_id, order_index=start + i)
            for i, bq in enumerate(fresh)
        ]
        self.repo.add_many(links)
        logger.info("quiz_questions_added %s", json.dumps({'quiz_id': quiz_id, 'added': len(links),
                                                           'skipped': len(wanted) - len(links)}))
        return {'added': len(links), 'skipped': len(wanted) - len(links)}

    def update_question(self, user_id: int, quiz_id: int, question_id: int, data: schemas.QuestionUpdate) -> dict:
        self.quizzes.require_quiz(user_id, quiz_id)
        if not any(link.question_id == question_id for link, _ in self.repo.list_for_quiz(quiz_id)):
            raise NotFoundError("Question not found in this quiz")
        question = self.question_service.update(question_id, user_id, data, authorized=True)
        return self.question_service.detail(question)

    def delete_from_quiz(self, user_id: int, quiz_id: int, quiz_question_id: int) -> None:
        self.quizzes.require_quiz(user_id, quiz_id)
        link = self.repo.get(quiz_question_id)
        if not link or link.quiz_id != quiz_id:
            raise NotFoundError("Quiz question not found")
        self.repo.delete(link)
