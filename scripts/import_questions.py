"""CLI script to import question files into a bank.
Usage: python scripts/import_questions.py BANK_ID OWNER_EMAIL FILE [FILE ...]

Accepts the same formats as the upload endpoint (JSON, CSV, TXT, PDF, DOCX).
The owner must have write access to the bank.
"""
import sys
import argparse
import pathlib
ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
from sqlmodel import Session
from evalify.database import engine
from evalify import repositories, services


def main(bank_id: int, email: str, paths):
    with Session(engine) as session:
        user = repositories.UserRepository(session).get_by_email(email)
        if not user:
            print(f'User not found: {email}')
            return 1
        svc = services.QuestionService(session)
        total_created = 0
        total_skipped = 0
        for p in paths:
            f = pathlib.Path(p)
            if not f.is_file():
                print(f'Not a file: {f}')
                continue
            try:
                result = svc.import_file(bank_id, user.id, f.read_bytes(), f.name)
            except ValueError as e:
                print(f'Error importing {f}: {e}')
                continue
            total_created += result['created']
            total_skipped += result['skipped']
            print(f"Imported {f}: created {result['created']}, skipped {result['skipped']}, "
                  f"errors {len(result['errors'])}")
            for err in result['errors']:
                print(f"  #{err['index']}: {err['error']}")
        print(f'Total created questions: {total_created}, skipped {total_skipped}')
    return 0


if __name__ == '__main__':
    parser = argparse.ArgumentParser()
    parser.add_argument('bank_id', type=int)
    parser.add_argument('email', help='Account the questions are created as')
    parser.add_argument('files', nargs='+')
    args = parser.parse_args()
    sys.exit(main(args.bank_id, args.email, args.files))
