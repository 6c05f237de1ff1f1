"""Data store protocol and implementations."""
import json
import logging
import threading
from datetime import datetime
from pathlib import Path
from typing import Protocol, runtime_checkable, Any
from urllib.parse import quote

import pyarrow as pa
import pyarrow.parquet as pq

from wavearbiter.models import (
    Decision,
    FragmentCategory,
    KnowledgeFragment,
    RiskContext,
    StateKey,
    StateRecord,
)

logger = logging.getLogger(__name__)

FRAGMENT_SCHEMA = pa.schema([
    ("id", pa.string()),
    ("document_id", pa.string()),
    ("category", pa.string()),
    ("section_title", pa.string()),
    ("content", pa.string()),
    ("source_page", pa.int32()),
    ("embedding", pa.list_(pa.float32())),
])


@runtime_checkable
class DataStore(Protocol):
    """Protocol for persistence backends used by the decision core."""

    # Trading state
    def load_trading_state(self, key: StateKey) -> StateRecord | None:
        """Load the state record for a key. Returns None if not found."""
        ...

    def save_trading_state(self, record: StateRecord) -> None:
        """Insert or replace the state record for its key."""
        ...

    def list_trading_states(self) -> list[StateRecord]:
        """List every persisted state record."""
        ...

    # Risk tracking
    def load_risk_context(self, user_id: str) -> RiskContext:
        """Load risk counters for a user. Returns zeroed counters if unknown."""
        ...

    # Audit
    def log_decision(self, run_id: str, conversation_id: str, query: str, decision: Decision,
                     extra: dict[str, Any] | None = None) -> None:
        """Append a decision record to the audit trail."""
        ...

    def log_dead_letter(self, run_id: str, conversation_id: str, decision: Decision, error: str) -> None:
        """Record a decision that could not be persisted."""
        ...


class FileDataStore:
    """File-based implementation of DataStore using JSON, JSONL and Parquet."""

    def __init__(self, base_path: str | Path, loss_threshold: int = 3):
        self.base_path = Path(base_path)
        self.loss_threshold = loss_threshold
        self._lock = threading.Lock()
        self._ensure_directories()

    def _ensure_directories(self) -> None:
        """Create directory structure if it doesn't exist."""
        dirs = [
            "knowledge",
            "state",
            "risk",
            "audit/decisions",
            "audit/dead_letter",
        ]
        for d in dirs:
            (self.base_path / d).mkdir(parents=True, exist_ok=True)

    @staticmethod
    def _safe_name(value: str) -> str:
        """Encode an identifier so it is usable as a single path component.

        On top of quote(), "_" (the state file separator) and all-dot names
        are escaped.
        """
        if not value:
            return "_"
        encoded = quote(value, safe="").replace("_", "%5F")
        if set(encoded) == {"."}:
            encoded = encoded.replace(".", "%2E")
        return encoded

    # =========================================================================
    # Knowledge Fragments (Parquet)
    # =========================================================================

    def write_fragments(self, document_id: str, fragments: list[KnowledgeFragment]) -> None:
        """Write all fragments of a document, replacing previous contents."""
        file_path = self.base_path / "knowledge" / f"{self._safe_name(document_id)}.parquet"

        for fragment in fragments:
            if fragment.document_id != document_id:
                raise ValueError(
                    f"Fragment {fragment.id} belongs to {fragment.document_id}, not {document_id}"
                )

        table = pa.table(
            {
                "id": [f.id for f in fragments],
                "document_id": [f.document_id for f in fragments],
                "category": [f.category.value for f in fragments],
                "section_title": [f.section_title for f in fragments],
                "content": [f.content for f in fragments],
                "source_page": [f.source_page for f in fragments],
                "embedding": [list(f.embedding) for f in fragments],
            },
            schema=FRAGMENT_SCHEMA,
        )
        with self._lock:
            pq.write_table(table, file_path)
        logger.debug(f"Wrote {len(fragments)} fragments to {file_path}")

    def read_fragments(self, document_id: str | None = None) -> list[KnowledgeFragment]:
        """Read fragments of one document, or of every document if None."""
        knowledge_dir = self.base_path / "knowledge"
        if document_id is not None:
            files = [knowledge_dir / f"{self._safe_name(document_id)}.parquet"]
        else:
            files = sorted(knowledge_dir.glob("*.parquet"))

        fragments: list[KnowledgeFragment] = []
        for file_path in files:
            if not file_path.exists():
                continue
            fragments.extend(self._read_parquet_fragments(file_path))
        return fragments

    def _read_parquet_fragments(self, path: Path) -> list[KnowledgeFragment]:
        """Read fragments from a Parquet file."""
        rows = pq.read_table(path, schema=FRAGMENT_SCHEMA).to_pylist()
        return [
            KnowledgeFragment(
                id=row["id"],
                document_id=row["document_id"],
                category=FragmentCategory(row["category"]),
                section_title=row["section_title"],
                content=row["content"],
                source_page=int(row["source_page"]),
                embedding=tuple(row["embedding"] or ()),
            )
            for row in rows
        ]

    def delete_document(self, document_id: str) -> int:
        """Delete a document and, with it, all of its fragments.

        Returns:
            Number of fragments removed
        """
        file_path = self.base_path / "knowledge" / f"{self._safe_name(document_id)}.parquet"
        if not file_path.exists():
            return 0
        count = pq.read_metadata(file_path).num_rows
        with self._lock:
            file_path.unlink()
        logger.info(f"Deleted document {document_id} ({count} fragments)")
        return count

    # =========================================================================
    # Trading State Storage (JSON)
    # =========================================================================

    def _state_path(self, key: StateKey) -> Path:
        return (
            self.base_path
            / "state"
            / self._safe_name(key.conversation_id)
            / f"{self._safe_name(key.symbol)}__{self._safe_name(key.timeframe)}.json"
        )

    def load_trading_state(self, key: StateKey) -> StateRecord | None:
        """Load trading state from JSON file."""
        file_path = self._state_path(key)
        if not file_path.exists():
            return None
        with open(file_path) as f:
            record = StateRecord.from_dict(json.load(f))
        if record.key != key:
            logger.warning(f"State file {file_path} holds {record.key}, not {key}")
            return None
        return record

    def save_trading_state(self, record: StateRecord) -> None:
        """Upsert trading state keyed on (conversation, symbol, timeframe)."""
        file_path = self._state_path(record.key)
        file_path.parent.mkdir(parents=True, exist_ok=True)

        # Write-then-rename so readers never see a half-written file
        tmp_path = file_path.with_suffix(".json.tmp")
        with self._lock:
            with open(tmp_path, "w") as f:
                json.dump(record.to_dict(), f, indent=2)
            tmp_path.replace(file_path)
        logger.debug(f"Saved trading state {record.key} = {record.state.value}")

    def list_trading_states(self) -> list[StateRecord]:
        """List every persisted state record."""
        records = []
        for file_path in sorted((self.base_path / "state").glob("*/*.json")):
            try:
                with open(file_path) as f:
                    records.append(StateRecord.from_dict(json.load(f)))
            except (OSError, ValueError, KeyError, TypeError) as e:
                logger.warning(f"Skipping unreadable trading state {file_path}: {e}")
        return records

    def delete_conversation(self, conversation_id: str) -> int:
        """Remove all trading states of a conversation.

        Returns:
            Number of state records removed
        """
        conv_dir = self.base_path / "state" / self._safe_name(conversation_id)
        if not conv_dir.exists():
            return 0
        removed = 0
        with self._lock:
            for file_path in conv_dir.glob("*.json"):
                file_path.unlink()
                removed += 1
            conv_dir.rmdir()
        logger.info(f"Deleted conversation {conversation_id} ({removed} trading states)")
        return removed

    # =========================================================================
    # Risk Tracking (JSON)
    # =========================================================================

    def _risk_path(self, user_id: str) -> Path:
        return self.base_path / "risk" / f"{self._safe_name(user_id)}.json"

    def load_risk_context(self, user_id: str) -> RiskContext:
        """Load risk counters for a user."""
        file_path = self._risk_path(user_id)
        if not file_path.exists():
            return RiskContext()
        with open(file_path) as f:
            data = json.load(f)
        return RiskContext(
            active_positions=data.get("active_positions", 0),
            consecutive_losses=data.get("consecutive_losses", 0),
            is_trading_enabled=data.get("is_trading_enabled", True),
        )

    def save_risk_context(self, user_id: str, context: RiskContext) -> None:
        """Save risk counters for a user."""
        data = {
            "user_id": user_id,
            "active_positions": context.active_positions,
            "consecutive_losses": context.consecutive_losses,
            "is_trading_enabled": context.is_trading_enabled,
            "updated_at": datetime.now().isoformat(),
        }
        with self._lock:
            with open(self._risk_path(user_id), "w") as f:
                json.dump(data, f, indent=2)

    def record_trade_outcome(self, user_id: str, is_loss: bool) -> RiskContext:
        """Update the consecutive-loss counter after a closed trade.

        A loss increments the counter and disables trading once it reaches
        the store's loss_threshold. A win resets the counter and re-enables
        trading.
        """
        current = self.load_risk_context(user_id)
        if is_loss:
            losses = current.consecutive_losses + 1
            updated = RiskContext(
                active_positions=current.active_positions,
                consecutive_losses=losses,
                is_trading_enabled=losses < self.loss_threshold,
            )
        else:
            updated = RiskContext(
                active_positions=current.active_positions,
                consecutive_losses=0,
                is_trading_enabled=True,
            )
        self.save_risk_context(user_id, updated)
        logger.info(
            f"Recorded {'loss' if is_loss else 'win'} for {user_id}: "
            f"consecutive_losses={updated.consecutive_losses}"
        )
        return updated

    # =========================================================================
    # Audit Logging (JSONL)
    # =========================================================================

    def _append_jsonl(self, file_path: Path, entry: dict[str, Any]) -> None:
        line = json.dumps(entry, ensure_ascii=False) + "\n"
        with self._lock:
            with open(file_path, "a") as f:
                f.write(line)

    def log_decision(self, run_id: str, conversation_id: str, query: str, decision: Decision,
                     extra: dict[str, Any] | None = None) -> None:
        """Log a decision to the daily JSONL file."""
        today = datetime.now().strftime("%Y-%m-%d")
        file_path = self.base_path / "audit" / "decisions" / f"{today}.jsonl"

        log_entry = {
            "timestamp": datetime.now().isoformat(),
            "run_id": run_id,
            "conversation_id": conversation_id,
            "user_query": query,
            "final_decision": decision.to_dict(),
        }
        if extra:
            log_entry.update(extra)

        self._append_jsonl(file_path, log_entry)
        logger.debug(f"Logged decision to {file_path}")

    def read_decisions(self, conversation_id: str | None = None, limit: int = 20) -> list[dict[str, Any]]:
        """Read logged decisions, newest first."""
        entries: list[dict[str, Any]] = []
        for file_path in sorted((self.base_path / "audit" / "decisions").glob("*.jsonl"), reverse=True):
            with open(file_path) as f:
                day_entries = [json.loads(line) for line in f if line.strip()]
            for entry in reversed(day_entries):
                if conversation_id is None or entry.get("conversation_id") == conversation_id:
                    entries.append(entry)
                    if len(entries) >= limit:
                        return entries
        return entries

    def log_dead_letter(self, run_id: str, conversation_id: str, decision: Decision, error: str) -> None:
        """Record a decision whose persistence failed."""
        file_path = self.base_path / "audit" / "dead_letter" / "decisions.jsonl"
        self._append_jsonl(file_path, {
            "timestamp": datetime.now().isoformat(),
            "run_id": run_id,
            "conversation_id": conversation_id,
            "error": error,
            "final_decision": decision.to_dict(),
        })
        logger.warning(f"Decision {run_id} written to dead letter: {error}")
