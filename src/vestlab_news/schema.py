"""JSON schema check for translation replies from the chat model."""

from __future__ import annotations

import json
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict

from jsonschema import Draft202012Validator

SCHEMA_FILE = Path(__file__).resolve().parent / "schemas" / "translation_schema.json"


def load_schema() -> Dict[str, Any]:
    return json.loads(SCHEMA_FILE.read_text(encoding="utf-8"))


@lru_cache(maxsize=1)
def _validator() -> Draft202012Validator:
    schema = load_schema()
    Draft202012Validator.check_schema(schema)
    return Draft202012Validator(schema)


def validate_translation_payload(payload: Any) -> Dict[str, str]:
    """
    Return the {"title", "content"} pair from a model reply.

    Keys the model adds beyond those two are dropped. Raises ValueError naming
    each offending field when the reply does not match the schema.
    """
    errors = sorted(_validator().iter_errors(payload), key=lambda err: [str(p) for p in err.absolute_path])
    if errors:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err.absolute_path) or 'reply'}: {err.message}"
            for err in errors
        )
        raise ValueError(f"Translation reply rejected: {problems}")
    return {"title": payload["title"], "content": payload["content"]}
