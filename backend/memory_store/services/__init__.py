"""Services module - read-side projections over the stores."""

from memory_store.services.workflow_buckets import bucket_name, workflow_buckets

__all__ = ["bucket_name", "workflow_buckets"]
