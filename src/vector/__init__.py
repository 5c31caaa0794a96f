"""
Tenant-Isolated Vector Module

Stores embeddings so that vectors of different tenants are never
meaningfully comparable, while similarity within a tenant is unchanged.

Key components:
- transform.py: OrthogonalTransform (tenant-keyed permutation + sign flip)
- store.py: EmbeddingStore with dimension shards (SQLite backend)
- sqlserver_store.py: SQL Server backend
- generator.py: EmbeddingGenerator (backend -> transform -> store)
- contracts/: EmbeddingRecord and SearchHit models

Key concepts:
- Shard: one fixed-dimension vector table (e.g. 384/768/1536)
- Tenant partition: the rows of one shard keyed by one tenant id
"""

__version__ = "0.1.0"
