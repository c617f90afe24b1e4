# Import all models so Alembic can discover them via Base.metadata
from .analytics_summary import VideoAnalyticsSummary
from .video_heatmap import VideoHeatmapSegment
from .video_session import VideoSession
from .watch_progress import WatchProgress

__all__ = [
    "VideoAnalyticsSummary",
    "VideoHeatmapSegment",
    "VideoSession",
    "WatchProgress",
]
