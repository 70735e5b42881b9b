"""Statistical analysis of a sea-anemone heat-stress experiment."""

__version__ = "0.1.0"

from .config import AnalysisConfig, DatasetSpec
from .errors import DataFormatError

__all__ = ["AnalysisConfig", "DataFormatError", "DatasetSpec", "__version__"]
