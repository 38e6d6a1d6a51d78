from ingestion.transformers.normalizer import LedgerNormalizer, ledger_from_toid

__all__ = ["LedgerNormalizer", "ledger_from_toid"]
