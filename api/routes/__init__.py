from api.routes import ingest, system

__all__ = ["ingest", "system"]
