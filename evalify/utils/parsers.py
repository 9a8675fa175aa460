"""Question file parsers used by the bank import endpoint.

Supported input types: JSON, CSV, TXT, PDF and DOCX. Every parser
returns a list of plain dicts:

    {
        'question': str,
        'type': 'MCQ' | 'MMCQ' | 'TRUE_FALSE',
        'options': [{'text': str, 'is_correct': bool}, ...],
        'marks': float,
        'difficulty': 'EASY' | 'MEDIUM' | 'HARD' | None,
        'explanation': str | None,
    }

Plain-text formats (TXT, PDF, DOCX) use blocks separated by blank lines:
the first line is the question and the following lines are options. An
option is flagged correct with a leading `*` or a trailing `(correct)`;
when a block has no marker at all the first option is taken as correct.
A block may also be written on one line as `question|opt1|opt2...`.
"""

import csv
import io
import json
from typing import Dict, List, Optional, Tuple

import docx
import pdfplumber

_DIFFICULTIES = {'EASY', 'MEDIUM', 'HARD'}


def parse_file_to_questions(file_bytes: bytes, filename: str) -> List[Dict]:
    """Dispatch to the appropriate parser based on file extension."""
    name = (filename or '').lower()
    if name.endswith('.json'):
        return parse_json(file_bytes)
    if name.endswith('.csv'):
        return parse_csv(file_bytes)
    if name.endswith('.txt'):
        return parse_txt(file_bytes)
    if name.endswith('.pdf'):
        return parse_pdf(file_bytes)
    if name.endswith('.docx'):
        return parse_docx(file_bytes)
    raise ValueError('Unsupported file type')


def parse_json(b: bytes) -> List[Dict]:
    """Parse a JSON array of question objects.

    Options may be given as `options` or `answers`, each either a string
    or an object with `text`/`optionText` and `is_correct`/`isCorrect`.
    """
    data = json.loads(b.decode('utf-8'))
    if isinstance(data, dict):
        data = data.get('questions') or []
    if not isinstance(data, list):
        raise ValueError('JSON import must be a list of questions')
    out = []
    for item in data:
        if not isinstance(item, dict):
            continue
        options = []
        for opt in item.get('options') or item.get('answers') or []:
            if isinstance(opt, dict):
                text = opt.get('text') or opt.get('optionText') or opt.get('answer_text') or ''
                correct = bool(opt.get('is_correct', opt.get('isCorrect', False)))
            else:
                text, correct = _parse_answer_line(str(opt))
            options.append({'text': str(text).strip(), 'is_correct': correct})
        out.append(build_question(
            item.get('question') or item.get('question_text') or '',
            options,
            marks=item.get('marks'),
            difficulty=item.get('difficulty'),
            explanation=item.get('explanation'),
        ))
    return out


def parse_csv(b: bytes) -> List[Dict]:
    """Parse a CSV with a `question` column and pipe-separated `options`.

    The `correct` column holds the correct option text; several correct
    options are separated by `|`. Optional columns: `marks`, `difficulty`,
    `explanation`.
    """
    out = []
    reader = csv.DictReader(io.StringIO(b.decode('utf-8-sig')))
    for row in reader:
        raw = row.get('options') or row.get('answers') or ''
        correct = {c.strip() for c in (row.get('correct') or '').split('|') if c.strip()}
        options = []
        for part in raw.split('|'):
            if not part.strip():
                continue
            text, marked = _parse_answer_line(part)
            options.append({'text': text, 'is_correct': marked or text in correct})
        out.append(build_question(
            row.get('question') or row.get('question_text') or '',
            options,
            marks=row.get('marks'),
            difficulty=row.get('difficulty'),
            explanation=row.get('explanation'),
        ))
    return out


def parse_txt(b: bytes) -> List[Dict]:
    return _parse_text(b.decode('utf-8'))


def parse_pdf(b: bytes) -> List[Dict]:
    """Extract text from every page and parse it like a TXT file."""
    parts = []
    with pdfplumber.open(io.BytesIO(b)) as pdf:
        for page in pdf.pages:
            parts.append(page.extract_text() or '')
    return _parse_text('\n\n'.join(parts))


def parse_docx(b: bytes) -> List[Dict]:
    """Parse a DOCX document; empty paragraphs separate question blocks."""
    doc = docx.Document(io.BytesIO(b))
    blocks, current = [], []
    for p in doc.paragraphs:
        text = (p.text or '').strip()
        if not text:
            if current:
                blocks.append(current)
                current = []
            continue
        current.append(text)
    if current:
        blocks.append(current)
    return [q for q in (_parse_block(lines) for lines in blocks) if q]


def _parse_text(text: str) -> List[Dict]:
    blocks = [blk for blk in text.replace('\r\n', '\n').split('\n\n') if blk.strip()]
    out = []
    for blk in blocks:
        q = _parse_block([ln.strip() for ln in blk.splitlines() if ln.strip()])
        if q:
            out.append(q)
    return out


def _parse_block(lines: List[str]) -> Optional[Dict]:
    if not lines:
        return None
    if len(lines) == 1 and '|' in lines[0]:
        lines = [x.strip() for x in lines[0].split('|') if x.strip()]
    question, option_lines = lines[0], lines[1:]
    options = []
    for line in option_lines:
        text, is_correct = _parse_answer_line(line)
        options.append({'text': text, 'is_correct': is_correct})
    if options and not any(o['is_correct'] for o in options):
        options[0]['is_correct'] = True
    return build_question(question, options)


def build_question(question: str, options: List[Dict], marks=None, difficulty=None, explanation=None) -> Dict:
    """Assemble a parsed question and infer its type from the options."""
    labels = sorted(o['text'].strip().lower() for o in options)
    if labels == ['false', 'true']:
        qtype = 'TRUE_FALSE'
    elif sum(1 for o in options if o['is_correct']) > 1:
        qtype = 'MMCQ'
    else:
        qtype = 'MCQ'
    diff = str(difficulty).strip().upper() if difficulty else None
    return {
        'question': str(question).strip(),
        'type': qtype,
        'options': options,
        'marks': _coerce_float(marks) or 1.0,
        'difficulty': diff if diff in _DIFFICULTIES else None,
        'explanation': explanation or None,
    }


def _parse_answer_line(text: str) -> Tuple[str, bool]:
    """Detect correctness markers in an option line.

    Supports a leading '*' or trailing markers like '(correct)'.
    """
    is_correct = False
    cleaned = text.strip()
    lower = cleaned.lower()
    for marker in ('(correct)', '[correct]', '{correct}'):
        if lower.endswith(marker):
            is_correct = True
            cleaned = cleaned[: -len(marker)].strip()
            break
    if cleaned.startswith('*'):
        is_correct = True
        cleaned = cleaned.lstrip('*').strip()
    return cleaned, is_correct


def _coerce_float(val) -> Optional[float]:
    try:
        return float(val) if val is not None and str(val).strip() != '' else None
    except (TypeError, ValueError):
        return None
