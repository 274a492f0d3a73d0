# Configuration package
from .reports import Report, ReportsManager, load_reports
from .settings import ConfigError, Settings, TimeWindow

__all__ = ['Report', 'ReportsManager', 'load_reports', 'ConfigError', 'Settings', 'TimeWindow']
