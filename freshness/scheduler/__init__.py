from .scheduler import FANOUT_JOB_ID, fanout_job, start_scheduler, stop_scheduler

__all__ = ["FANOUT_JOB_ID", "fanout_job", "start_scheduler", "stop_scheduler"]
