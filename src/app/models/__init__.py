from .base import Base
from .pipeline import Pipeline
from .sequence_state import SequencePipelineState
from .time_interval_state import TimeIntervalPipelineState
from .file_list_state import FileListPipelineState, ProcessedFile
from .schedule import Schedule
from .run import PipelineRun

__all__ = [
    "Base",
    "Pipeline",
    "SequencePipelineState",
    "TimeIntervalPipelineState",
    "FileListPipelineState",
    "ProcessedFile",
    "Schedule",
    "PipelineRun",
]
