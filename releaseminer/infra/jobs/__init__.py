from .repackage import RepackageJob, SourceSpec

__all__ = ["RepackageJob", "SourceSpec"]
