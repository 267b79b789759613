from .core import JobExecutor, failed_job, mask_secrets, skipped_steps

__all__ = ["JobExecutor", "failed_job", "mask_secrets", "skipped_steps"]
