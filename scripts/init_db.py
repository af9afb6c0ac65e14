import sys
from pathlib import Path

# Ensure project root is on sys.path when running this script directly
PROJECT_ROOT = Path(__file__).resolve().parent.parent
if str(PROJECT_ROOT) not in sys.path:
    sys.path.insert(0, str(PROJECT_ROOT))

from dotenv import load_dotenv
from pymongo.errors import CollectionInvalid, OperationFailure

from src.db.generation_log import LOG_COLLECTION
from src.db.mongo import close_client, ensure_log_indexes, get_db


def ensure_generation_logs(db):
    validator = {
        "$jsonSchema": {
            "bsonType": "object",
            "required": ["generationId", "kind", "status", "startedAt"],
            "properties": {
                "generationId": {"bsonType": "string"},
                "kind": {"enum": ["generation", "refinement", "validation"]},
                "status": {"bsonType": "string"},
                "startedAt": {"bsonType": "string"},
                "tokensUsed": {"bsonType": ["int", "long"]},
                "fallbacks": {"bsonType": "array"},
                "errors": {"bsonType": "array"},
            },
        }
    }
    try:
        db.create_collection(LOG_COLLECTION, validator=validator)
    except (OperationFailure, CollectionInvalid):
        # Already exists -> collMod (best-effort)
        try:
            db.command({"collMod": LOG_COLLECTION, "validator": validator})
        except OperationFailure as exc:
            print(f"[warn] could not update validator: {exc}", file=sys.stderr)


def main():
    load_dotenv()
    try:
        ensure_generation_logs(get_db())
        names = ensure_log_indexes(LOG_COLLECTION)
    finally:
        close_client()
    print(f"Initialized MongoDB collection {LOG_COLLECTION} (validator + indexes: {', '.join(names)})")


if __name__ == "__main__":
    main()
