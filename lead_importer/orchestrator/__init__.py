"""Workflow orchestration for running import jobs end to end."""

from .service import ImportOrchestrator, ImportTask, new_upload_id

__all__ = ["ImportOrchestrator", "ImportTask", "new_upload_id"]
