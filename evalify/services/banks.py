"""Question banks, topics and questions.

Banks belong to their creator (reported as OWNER) and may be shared with
other staff at READ or WRITE level. Questions are stored once and placed
into banks through `BankQuestion` rows; quizzes reference the same
question rows.

Question input arrives as one flat request per type and is split into a
versioned `question_data` document (what a student may see) and a
versioned `solution` document (what only staff may see).
"""

import json
import logging
from typing import Dict, List, Optional, Tuple

from sqlmodel import Session

from .. import models, repositories, schemas
from ..errors import ConflictError, ForbiddenError, NotFoundError
from ..serializers import bank_out, question_out, topic_out, user_brief
from ..utils.parsers import parse_file_to_questions
from ..utils.versioning import version_data, version_solution
from .academics import paging

logger = logging.getLogger("evalify.banks")

_TYPE_FIELDS = (
    'question_data', 'solution', 'true_false_answer', 'blank_config', 'descriptive_config',
    'options', 'coding_config', 'test_cases', 'reference_solution', 'file_upload_config',
    'attached_files',
)


def _unique(ids: List[str], what: str):
    if len(ids) != len(set(ids)):
        raise ValueError(f"{what} ids must be unique")


def build_question_payload(qtype: models.QuestionType, payload: schemas._QuestionTypePayload) -> Tuple[dict, dict]:
    """Validate per-type input and return the `(question_data, solution)` pair."""
    qtype = models.QuestionType(qtype)
    if qtype in (models.QuestionType.MCQ, models.QuestionType.MMCQ):
        if payload.question_data is None or payload.solution is None:
            raise ValueError(f"{qtype.value} questions require options and correct options")
        options = sorted(payload.question_data.options, key=lambda o: o.orderIndex)
        option_ids = [o.id for o in options]
        _unique(option_ids, "Option")
        correct = payload.solution.correctOptions
        if any(c.id not in option_ids for c in correct):
            raise ValueError("Correct options must reference existing options")
        if not any(c.isCorrect for c in correct):
            raise ValueError("At least one option must be marked correct")
        data = {'options': [o.model_dump(exclude_none=True) for o in options]}
        return data, {'correctOptions': [c.model_dump() for c in correct]}

    if qtype == models.QuestionType.TRUE_FALSE:
        if payload.true_false_answer is None:
            raise ValueError("TRUE_FALSE questions require trueFalseAnswer")
        return {}, {'trueFalseAnswer': payload.true_false_answer}

    if qtype == models.QuestionType.FILL_THE_BLANK:
        cfg = payload.blank_config
        if cfg is None or not cfg.acceptableAnswers:
            raise ValueError("FILL_THE_BLANK questions require acceptable answers for each blank")
        data = {'config': {
            'blankCount': cfg.blankCount,
            'blankWeights': cfg.blankWeights,
            'evaluationType': cfg.evaluationType,
        }}
        answers = {k: v.model_dump() for k, v in cfg.acceptableAnswers.items()}
        return data, {'acceptableAnswers': answers}

    if qtype == models.QuestionType.DESCRIPTIVE:
        cfg = payload.descriptive_config or schemas.DescriptiveConfigIn()
        data = {'config': {'minWords': cfg.minWords, 'maxWords': cfg.maxWords}}
        return data, {'modelAnswer': cfg.modelAnswer, 'keywords': cfg.keywords or []}

    if qtype == models.QuestionType.MATCHING:
        options = payload.options or []
        left = [o for o in options if o.isLeft]
        right_ids = {o.id for o in options if not o.isLeft}
        if not left or not right_ids:
            raise ValueError("Matching questions need at least one left and one right item")
        _unique([o.id for o in options], "Option")
        for o in left:
            if any(pid not in right_ids for pid in (o.matchPairIds or [])):
                raise ValueError("Match pairs must reference right-side items")
        ordered = sorted(options, key=lambda o: o.orderIndex)
        data = {'options': [
            {'id': o.id, 'isLeft': o.isLeft, 'text': o.text, 'orderIndex': o.orderIndex} for o in ordered
        ]}
        solution = {'options': [{'id': o.id, 'matchPairIds': o.matchPairIds or []} for o in left]}
        return data, solution

    if qtype == models.QuestionType.CODING:
        cfg = payload.coding_config or schemas.CodingConfigIn()
        cases = sorted(payload.test_cases or [], key=lambda t: t.orderIndex)
        _unique([t.id for t in cases], "Test case")
        data = {'config': cfg.model_dump(), 'testCases': [t.model_dump() for t in cases]}
        return data, {'referenceSolution': payload.reference_solution}

    cfg = payload.file_upload_config or schemas.FileUploadConfigIn()
    return {'config': cfg.model_dump(), 'attachedFiles': payload.attached_files or []}, {}


class BankService:
    """Bank CRUD, access resolution and sharing."""
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.BankRepository(session)
        self.users = repositories.UserRepository(session)

    def get(self, bank_id: int) -> models.Bank:
        bank = self.repo.get(bank_id)
        if not bank:
            raise NotFoundError("Bank not found")
        return bank

    def access_level(self, bank: models.Bank, user_id: int) -> Optional[models.BankAccess]:
        if bank.created_by_id == user_id:
            return models.BankAccess.OWNER
        share = self.repo.get_share(bank.id, user_id)
        return share.access_level if share else None

    def require_access(self, bank_id: int, user_id: int, write: bool = False) -> models.Bank:
        """Return the bank if `user_id` may read it (or write to it when `write`)."""
        bank = self.get(bank_id)
        level = self.access_level(bank, user_id)
        if level is None:
            raise ForbiddenError("You do not have access to this bank")
        if write and level == models.BankAccess.READ:
            raise ForbiddenError("You do not have write access to this bank")
        return bank

    def require_owner(self, bank_id: int, user_id: int) -> models.Bank:
        bank = self.get(bank_id)
        if bank.created_by_id != user_id:
            raise ForbiddenError("Only the bank owner can do this")
        return bank

    def _with_counts(self, bank: models.Bank, level: models.BankAccess) -> dict:
        out = bank_out(bank, level)
        out['question_count'] = self.repo.question_count(bank.id)
        out['shared_user_count'] = self.repo.share_count(bank.id)
        return out

    def list(self, user_id: int, search: Optional[str] = None, page: int = 1, limit: int = 20) -> dict:
        offset, limit = paging(page, limit)
        entries = [(b, models.BankAccess.OWNER) for b in self.repo.list_owned(user_id, search)]
        entries += [(b, share.access_level) for b, share in self.repo.list_shared_with(user_id, search)]
        entries.sort(key=lambda e: (e[0].created_at, e[0].id), reverse=True)
        window = entries[offset:offset + limit]
        return {
            'banks': [self._with_counts(b, level) for b, level in window],
            'total': len(entries),
            'hasMore': offset + len(window) < len(entries),
        }

    def get_detail(self, bank_id: int, user_id: int) -> dict:
        bank = self.require_access(bank_id, user_id)
        return self._with_counts(bank, self.access_level(bank, user_id))

    def create(self, user_id: int, data: schemas.BankIn) -> models.Bank:
        bank = models.Bank(name=data.name.strip(), course_code=data.course_code, semester=data.semester,
                           created_by_id=user_id)
        return self.repo.save(bank)

    def update(self, bank_id: int, user_id: int, data: schemas.BankUpdate) -> models.Bank:
        bank = self.require_access(bank_id, user_id, write=True)
        for field, value in data.model_dump(exclude_unset=True, exclude_none=True).items():
            setattr(bank, field, value)
        return self.repo.save(bank)

    def delete(self, bank_id: int, user_id: int) -> None:
        self.repo.delete(self.require_owner(bank_id, user_id))

    def share(self, bank_id: int, owner_id: int, user_ids: List[int], access_level: str) -> dict:
        self.require_owner(bank_id, owner_id)
        if owner_id in user_ids:
            raise ValueError("You cannot share a bank with yourself")
        users = self.users.get_many(user_ids)
        if len(users) != len(set(user_ids)):
            raise NotFoundError("One or more users were not found")
        if any(u.role not in (models.Role.FACULTY, models.Role.MANAGER) for u in users):
            raise ValueError("Banks can only be shared with faculty or managers")
        added = self.repo.add_shares(bank_id, user_ids, models.BankAccess(access_level))
        logger.info("bank_shared %s", json.dumps({'bank_id': bank_id, 'user_ids': list(user_ids),
                                                   'access_level': access_level, 'added': added}))
        return {'shared': added}

    def unshare(self, bank_id: int, owner_id: int, user_id: int) -> None:
        self.require_owner(bank_id, owner_id)
        if not self.repo.get_share(bank_id, user_id):
            raise NotFoundError("User does not have access to this bank")
        self.repo.remove_share(bank_id, user_id)

    def update_access_level(self, bank_id: int, owner_id: int, user_id: int, access_level: str) -> None:
        self.require_owner(bank_id, owner_id)
        share = self.repo.get_share(bank_id, user_id)
        if not share:
            raise NotFoundError("User does not have access to this bank")
        share.access_level = models.BankAccess(access_level)
        self.repo.save(share)

    def shared_users(self, bank_id: int, user_id: int) -> List[dict]:
        self.require_access(bank_id, user_id)
        out = []
        for share in self.repo.list_shares(bank_id):
            user = self.users.get(share.user_id)
            if user:
                item = user_brief(user)
                item['access_level'] = share.access_level.value
                out.append(item)
        return out

    def search_users(self, user_id: int, query: Optional[str] = None, limit: int = 20) -> List[dict]:
        rows, _ = self.users.list(search=query, roles=[models.Role.FACULTY, models.Role.MANAGER],
                                  status=models.UserStatus.ACTIVE, exclude_ids=[user_id],
                                  limit=max(1, min(limit, 50)))
        return [user_brief(u) for u in rows]


class TopicService:
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.TopicRepository(session)
        self.banks = BankService(session)

    def get(self, topic_id: int) -> models.Topic:
        topic = self.repo.get(topic_id)
        if not topic:
            raise NotFoundError("Topic not found")
        return topic

    def list_by_bank(self, bank_id: int, user_id: int) -> List[dict]:
        self.banks.require_access(bank_id, user_id)
        out = []
        for topic in self.repo.list_by_bank(bank_id):
            item = topic_out(topic)
            item['question_count'] = self.repo.question_count(topic.id)
            out.append(item)
        return out

    def create(self, bank_id: int, user_id: int, name: str) -> models.Topic:
        self.banks.require_access(bank_id, user_id, write=True)
        if self.repo.get_by_name(bank_id, name):
            raise ConflictError("Topic already exists in this bank")
        return self.repo.save(models.Topic(bank_id=bank_id, name=name.strip()))

    def update(self, topic_id: int, user_id: int, name: str) -> models.Topic:
        topic = self.get(topic_id)
        self.banks.require_access(topic.bank_id, user_id, write=True)
        clash = self.repo.get_by_name(topic.bank_id, name)
        if clash and clash.id != topic.id:
            raise ConflictError("Topic already exists in this bank")
        topic.name = name.strip()
        return self.repo.save(topic)

    def delete(self, topic_id: int, user_id: int) -> None:
        topic = self.get(topic_id)
        self.banks.require_access(topic.bank_id, user_id, write=True)
        self.repo.delete(topic)


class QuestionService:
    """Question creation, bank listing and file import."""
    def __init__(self, session: Session):
        self.session = session
        self.repo = repositories.QuestionRepository(session)
        self.topics = repositories.TopicRepository(session)
        self.banks = BankService(session)

    def get_question(self, question_id: int) -> models.Question:
        question = self.repo.get(question_id)
        if not question:
            raise NotFoundError("Question not found")
        return question

    def _check_topics(self, bank_ids: List[int], topic_ids: List[int]) -> None:
        for topic_id in topic_ids:
            topic = self.topics.get(topic_id)
            if not topic or topic.bank_id not in bank_ids:
                raise ValueError(f"Topic {topic_id} does not belong to this bank")

    def detail(self, question: models.Question, include_solution: bool = True) -> dict:
        out = question_out(question, include_solution=include_solution)
        topics = [self.topics.get(tid) for tid in self.repo.topic_ids(question.id)]
        out['topics'] = [topic_out(t) for t in topics if t]
        return out

    def create(self, data: schemas.QuestionIn, user_id: int) -> models.Question:
        """Create a question row (not yet placed in any bank or quiz)."""
        question_data, solution = build_question_payload(data.type, data)
        question = models.Question(
            type=data.type,
            question=data.question,
            marks=data.marks,
            negative_marks=data.negative_marks,
            difficulty=data.difficulty,
            course_outcome=data.course_outcome,
            bloom_level=data.bloom_level,
            question_data=version_data(data.type, question_data),
            solution=version_solution(data.type, solution),
            explanation=data.explanation,
            created_by_id=user_id,
        )
        return self.repo.save(question)

    def create_for_bank(self, bank_id: int, user_id: int, data: schemas.QuestionIn) -> dict:
        self.banks.require_access(bank_id, user_id, write=True)
        if data.topic_ids:
            self._check_topics([bank_id], data.topic_ids)
        question = self.create(data, user_id)
        link = self.repo.add_to_bank(bank_id, question.id)
        if data.topic_ids:
            self.repo.set_topics(question.id, data.topic_ids)
        out = self.detail(question)
        out['bank_question_id'] = link.id
        return out

    def list_by_bank(self, bank_id: int, user_id: int, topic_ids: Optional[List[int]] = None,
                     question_type: Optional[models.QuestionType] = None, search: Optional[str] = None) -> List[dict]:
        self.banks.require_access(bank_id, user_id)
        out = []
        for question, link in self.repo.list_by_bank(bank_id, topic_ids, question_type, search):
            item = self.detail(question)
            item['bank_question_id'] = link.id
            out.append(item)
        return out

    def can_write(self, question: models.Question, user_id: int) -> bool:
        if question.created_by_id == user_id:
            return True
        for bank_id in self.repo.bank_ids_for_question(question.id):
            bank = self.banks.repo.get(bank_id)
            level = self.banks.access_level(bank, user_id) if bank else None
            if level in (models.BankAccess.OWNER, models.BankAccess.WRITE):
                return True
        return False

    def can_read(self, question: models.Question, user_id: int) -> bool:
        if question.created_by_id == user_id:
            return True
        for bank_id in self.repo.bank_ids_for_question(question.id):
            bank = self.banks.repo.get(bank_id)
            if bank and self.banks.access_level(bank, user_id):
                return True
        return False

    def get(self, question_id: int, user_id: int, authorized: bool = False) -> dict:
        question = self.get_question(question_id)
        if not authorized and not self.can_read(question, user_id):
            raise ForbiddenError("You do not have access to this question")
        return self.detail(question)

    def update(self, question_id: int, user_id: int, data: schemas.QuestionUpdate,
               authorized: bool = False) -> models.Question:
        """Partially update a question.

        Supplying a new type or any per-type field rebuilds both versioned
        documents, so the per-type payload must then be complete.
        `authorized` skips the bank access check for callers (quiz editors)
        that already verified their own rights.
        """
        question = self.get_question(question_id)
        if not authorized and not self.can_write(question, user_id):
            raise ForbiddenError("You do not have write access to this question")
        changes = data.model_dump(exclude_unset=True)
        qtype = data.type or question.type
        if 'type' in changes or any(f in changes for f in _TYPE_FIELDS):
            question_data, solution = build_question_payload(qtype, data)
            question.type = qtype
            question.question_data = version_data(qtype, question_data)
            question.solution = version_solution(qtype, solution)
        for field in ('question', 'marks', 'negative_marks'):
            if changes.get(field) is not None:
                setattr(question, field, changes[field])
        # nullable metadata may be cleared explicitly
        for field in ('difficulty', 'course_outcome', 'bloom_level', 'explanation'):
            if field in changes:
                setattr(question, field, changes[field])
        if data.topic_ids is not None:
            bank_ids = self.repo.bank_ids_for_question(question.id)
            self._check_topics(bank_ids, data.topic_ids)
            self.repo.set_topics(question.id, data.topic_ids)
        question.updated_at = models.utcnow()
        return self.repo.save(question)

    def delete(self, question_id: int, user_id: int) -> None:
        question = self.get_question(question_id)
        if not self.can_write(question, user_id):
            raise ForbiddenError("You do not have write access to this question")
        self.repo.delete(question)

    def import_file(self, bank_id: int, user_id: int, file_bytes: bytes, filename: str) -> Dict:
        """Parse an uploaded file and add its questions to the bank.

        Questions whose text already exists in the bank are skipped. Rows
        that fail validation are reported in `errors` by position.
        """
        self.banks.require_access(bank_id, user_id, write=True)
        try:
            parsed = parse_file_to_questions(file_bytes, filename)
        except ValueError:
            raise
        except Exception as e:  # pdfplumber / python-docx raise their own error types
            logger.warning("question_import_parse_failed bank_id=%s file=%s error=%s", bank_id, filename, e)
            raise ValueError(f"Could not parse file: {e}")
        created, skipped, errors = 0, 0, []
        for idx, item in enumerate(parsed):
            text = item['question']
            if not text:
                errors.append({'index': idx, 'error': 'Question text is empty'})
                continue
            if self.repo.exists_in_bank_by_text(bank_id, text):
                skipped += 1
                continue
            try:
                payload = self._parsed_to_input(item)
                question = self.create(payload, user_id)
            except ValueError as e:
                errors.append({'index': idx, 'error': str(e)})
                continue
            self.repo.add_to_bank(bank_id, question.id)
            created += 1
        logger.info("questions_imported %s", json.dumps({'bank_id': bank_id, 'file': filename, 'created': created,
                                                         'skipped': skipped, 'errors': len(errors)}))
        return {'created': created, 'skipped': skipped, 'errors': errors}

    @staticmethod
    def _parsed_to_input(item: Dict) -> schemas.QuestionIn:
        common = {
            'type': item['type'],
            'question': item['question'],
            'marks': item['marks'],
            'difficulty': item.get('difficulty'),
            'explanation': item.get('explanation'),
        }
        options = item['options']
        if item['type'] == 'TRUE_FALSE':
            answer = next((o['text'].strip().lower() == 'true' for o in options if o['is_correct']), True)
            return schemas.QuestionIn(**common, true_false_answer=answer)
        if len(options) < 2:
            raise ValueError('At least two options are required')
        ids = [f"opt{i + 1}" for i in range(len(options))]
        return schemas.QuestionIn(
            **common,
            question_data={'options': [
                {'id': oid, 'optionText': o['text'], 'orderIndex': i} for i, (oid, o) in enumerate(zip(ids, options))
            ]},
            solution={'correctOptions': [
                {'id': oid, 'isCorrect': o['is_correct']} for oid, o in zip(ids, options)
            ]},
        )
