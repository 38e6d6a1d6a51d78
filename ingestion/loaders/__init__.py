from ingestion.loaders.postgres_loader import LedgerWriter, LedgerBatch
from ingestion.loaders.checkpoint_store import CheckpointStore, GLOBAL_SCOPE
from ingestion.loaders.ledger_reader import LedgerReader

__all__ = ["LedgerWriter", "LedgerBatch", "CheckpointStore", "GLOBAL_SCOPE", "LedgerReader"]
