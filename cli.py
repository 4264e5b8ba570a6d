import argparse
import json
from pathlib import Path

from assess.config import LOG_LEVEL
from assess.database import SessionLocal, init_db
from assess.logging_setup import setup_console_logging
from assess.models import Assessment
from assess.services import assessment_service, attempt_service

setup_console_logging(LOG_LEVEL)


def parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Assessment attempt store tools")
    commands = parser.add_subparsers(dest="command", required=True)

    serve = commands.add_parser("serve", help="Run the API server")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    commands.add_parser("init-db", help="Create database tables")

    seed = commands.add_parser("seed", help="Load an assessment definition from JSON")
    seed.add_argument("file", type=Path, help="Path to the assessment .json file")

    summary = commands.add_parser("summary", help="Print a student's score totals")
    summary.add_argument("assessment_id")
    summary.add_argument("student_id")
    return parser.parse_args()


def seed(path: Path) -> str:
    assessment = Assessment(**json.loads(path.read_text(encoding="utf-8")))
    init_db()
    db = SessionLocal()
    try:
        assessment_service.save_assessment(db, assessment)
    finally:
        db.close()
    return assessment.id


def summary(assessment_id: str, student_id: str) -> dict[str, object]:
    db = SessionLocal()
    try:
        assessment = assessment_service.load_assessment(db, assessment_id)
        totals = attempt_service.summarize_attempt(db, assessment, student_id)
    finally:
        db.close()
    return totals.model_dump() | {"percent": round(totals.percent, 2)}


def main() -> None:
    args = parse_args()
    if args.command == "serve":
        import uvicorn

        from assess.app import app

        uvicorn.run(app, host=args.host, port=args.port)
    elif args.command == "init-db":
        init_db()
        print("Database initialized")
    elif args.command == "seed":
        assessment_id = seed(args.file)
        print(f"Saved assessment {assessment_id}")
    elif args.command == "summary":
        print(json.dumps(summary(args.assessment_id, args.student_id), indent=2))


if __name__ == "__main__":
    main()
