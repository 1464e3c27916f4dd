import json
from pathlib import Path

import structlog
from pydantic import BaseModel, TypeAdapter

logger = structlog.get_logger("reference")

BUNDLED_DATASET = Path(__file__).resolve().parent.parent / "data" / "statutes.json"

NOT_FOUND_TEXT = "Sorry, I could not find a relevant statute."


class ReferenceRecord(BaseModel):
    code: str
    title: str
    text: str

    def render(self) -> str:
        return f"{self.code} - {self.title}: {self.text}"


class ReferenceLibrary:
    """Small static dataset, scanned in order; the first record whose code
    or title appears in the query wins."""

    def __init__(self, records: list[ReferenceRecord]) -> None:
        self._records = list(records)

    @classmethod
    def from_file(cls, path: str | Path | None = None) -> "ReferenceLibrary":
        source = Path(path) if path else BUNDLED_DATASET
        raw = json.loads(source.read_text(encoding="utf-8"))
        records = TypeAdapter(list[ReferenceRecord]).validate_python(raw)
        logger.info("reference_dataset_loaded", path=str(source), records=len(records))
        return cls(records)

    def __len__(self) -> int:
        return len(self._records)

    def lookup(self, query: str) -> ReferenceRecord | None:
        lower = query.lower()
        for record in self._records:
            if record.code.lower() in lower or record.title.lower() in lower:
                return record
        return None
