from .capture_config import CaptureConfig, load_capture_config
from .errors import (
    LogCaptureError,
    MissingSource,
    PersistenceFailure,
    StaleStateTransition,
    WatchFailure,
)
from .line_source import LineSource, PollingLineSource, SourceState, Subscription
from .log_capture_plugin import CaptureContext, LogCapturePlugin
from .log_paths import PathResolver, StaticPathResolver, TemplatePathResolver
from .log_recording import LogRecording, RecordingState
from .process_line_source import ProcessLineSource
from .tail_registry import DEFAULT_CHANNELS, TailRegistry, make_source_factory

__all__ = [
    'CaptureConfig',
    'load_capture_config',
    'LogCaptureError',
    'MissingSource',
    'PersistenceFailure',
    'StaleStateTransition',
    'WatchFailure',
    'LineSource',
    'PollingLineSource',
    'ProcessLineSource',
    'SourceState',
    'Subscription',
    'CaptureContext',
    'LogCapturePlugin',
    'PathResolver',
    'StaticPathResolver',
    'TemplatePathResolver',
    'LogRecording',
    'RecordingState',
    'DEFAULT_CHANNELS',
    'TailRegistry',
    'make_source_factory',
]
