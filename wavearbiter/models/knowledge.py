"""Knowledge fragment models for retrieval."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class FragmentCategory(Enum):
    """Kind of knowledge a fragment carries."""
    RULE = "rule"
    EXCEPTION = "exception"
    DEFINITION = "definition"


@dataclass(frozen=True)
class KnowledgeFragment:
    """Single retrievable unit of domain knowledge."""
    id: str
    document_id: str
    category: FragmentCategory
    section_title: str
    content: str
    source_page: int
    embedding: tuple[float, ...] = field(default=(), repr=False)

    def to_dict(self, include_embedding: bool = False) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        d = {
            "id": self.id,
            "document_id": self.document_id,
            "category": self.category.value,
            "section_title": self.section_title,
            "content": self.content,
            "source_page": self.source_page,
        }
        if include_embedding:
            d["embedding"] = list(self.embedding)
        return d


@dataclass(frozen=True)
class ScoredFragment:
    """A fragment paired with its relevance score (0.0 to 1.0)."""
    fragment: KnowledgeFragment
    score: float


@dataclass
class RetrievalResult:
    """Ordered retrieval output; list order is relevance order."""
    items: list[ScoredFragment] = field(default_factory=list)
    total_retrieved: int = 0

    @property
    def fragments(self) -> list[KnowledgeFragment]:
        return [item.fragment for item in self.items]

    @property
    def scores(self) -> list[float]:
        return [item.score for item in self.items]

    def __len__(self) -> int:
        return len(self.items)

    def summary(self, limit: int = 3, preview_chars: int = 100) -> list[dict[str, Any]]:
        """Short description of the top fragments for audit records."""
        return [
            {
                "section": item.fragment.section_title,
                "page": item.fragment.source_page,
                "content": item.fragment.content[:preview_chars] + "...",
            }
            for item in self.items[:limit]
        ]
