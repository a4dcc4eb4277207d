from .seven_zip import SevenZip
from .staged import ArchiveFormat, StagedExtractor, get_extractor

__all__ = ["SevenZip", "ArchiveFormat", "StagedExtractor", "get_extractor"]
