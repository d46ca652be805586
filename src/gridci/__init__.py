from .scheduler import run_pipeline, plan_run
from .runner import run_cell
from .cache import CacheStore, FileCacheStore, MemoryCacheStore
from .cancel import CancelToken
from .model import Job, Step, PipelineDefinition, Trigger, TriggerContext, RunResult
# Imported last: binds the DSL ``matrix`` function over the ``gridci.matrix`` submodule attribute.
from .dsl import job, sh, cache, cached, matrix, wf, pipeline, JobBuilder, build

__all__ = [
    "job", "sh", "cache", "cached", "matrix", "wf", "pipeline", "JobBuilder", "build",
    "run_pipeline", "plan_run", "run_cell",
    "CacheStore", "FileCacheStore", "MemoryCacheStore", "CancelToken",
    "Job", "Step", "PipelineDefinition", "Trigger", "TriggerContext", "RunResult",
]
