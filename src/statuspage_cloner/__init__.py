"""statuspage-cloner - Reconstruct third-party status pages as structured data."""

__version__ = "0.1.0"

from statuspage_cloner.models import ExtractedIncident, ExtractedResult, ExtractedService
from statuspage_cloner.pipeline import clone_page

__all__ = ["ExtractedIncident", "ExtractedResult", "ExtractedService", "clone_page"]
