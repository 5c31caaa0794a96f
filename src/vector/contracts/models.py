"""
Vector Data Models

Data models for the tenant-isolated embedding tables:
- search_index: one metadata row per (tenant, segment, model)
- search_vectors_<dim>: one transformed vector per index row, one table per
  supported dimensionality, keyed by (tenant_id, index_id)
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Tuple
import json
import uuid


DEFAULT_DIMENSIONS: Tuple[int, ...] = (384, 768, 1536)


def parse_timestamp(val: Any) -> Optional[datetime]:
    """Parse a stored timestamp (ISO text or datetime) into an aware datetime."""
    if val is None or val == "":
        return None
    if isinstance(val, datetime):
        dt = val
    else:
        dt = datetime.fromisoformat(str(val))
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return dt


@dataclass
class EmbeddingRecord:
    """
    One stored embedding for one segment of one tenant.

    The vector held here is always the tenant-transformed vector; raw vectors
    are never persisted.

    Attributes:
        index_id: Unique identifier shared by the index row and the shard row
        tenant_id: Owning tenant
        segment_id: Embedded content segment
        model_name: Generating model name
        dimension: Vector length (selects the shard)
        vector: Transformed vector
        journey_id: Optional journey scope
        created_utc: Creation timestamp
        updated_utc: Last re-embedding timestamp
    """
    index_id: str
    tenant_id: str
    segment_id: str
    model_name: str
    dimension: int
    vector: List[float]
    journey_id: Optional[str] = None
    created_utc: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    updated_utc: Optional[datetime] = None

    def to_dict(self, include_vector: bool = False) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        result = {
            "index_id": self.index_id,
            "tenant_id": self.tenant_id,
            "segment_id": self.segment_id,
            "journey_id": self.journey_id,
            "model_name": self.model_name,
            "dimension": self.dimension,
            "created_utc": self.created_utc.isoformat(),
            "updated_utc": self.updated_utc.isoformat() if self.updated_utc else None,
        }
        if include_vector:
            result["vector"] = self.vector
        return result

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "EmbeddingRecord":
        """Create from a joined index/shard row."""
        vector = row["vector_json"]
        return cls(
            index_id=str(row["index_id"]),
            tenant_id=str(row["tenant_id"]),
            segment_id=str(row["segment_id"]),
            journey_id=str(row["journey_id"]) if row.get("journey_id") else None,
            model_name=row["model_name"],
            dimension=int(row["dimension"]),
            vector=json.loads(vector) if isinstance(vector, str) else list(vector),
            created_utc=parse_timestamp(row["created_utc"]),
            updated_utc=parse_timestamp(row.get("updated_utc")),
        )

    @classmethod
    def create_new(
        cls,
        tenant_id: str,
        segment_id: str,
        model_name: str,
        vector: List[float],
        journey_id: Optional[str] = None,
    ) -> "EmbeddingRecord":
        """Create a new record with a generated index id."""
        return cls(
            index_id=str(uuid.uuid4()),
            tenant_id=tenant_id,
            segment_id=segment_id,
            model_name=model_name,
            dimension=len(vector),
            vector=vector,
            journey_id=journey_id,
        )


@dataclass
class SearchHit:
    """
    A single similarity search result.

    Attributes:
        segment_id: Matching segment
        similarity: Cosine similarity to the query (-1..1)
        rank: 1-based position in the result list
        index_id: Index row of the match
        journey_id: Journey scope of the match
        model_name: Generating model of the match
    """
    segment_id: str
    similarity: float
    rank: int
    index_id: str
    journey_id: Optional[str] = None
    model_name: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "segment_id": self.segment_id,
            "similarity": self.similarity,
            "rank": self.rank,
            "index_id": self.index_id,
            "journey_id": self.journey_id,
            "model_name": self.model_name,
        }
