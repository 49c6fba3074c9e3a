from querycache.services.analysis_client import AnalysisServiceClient

__all__ = ["AnalysisServiceClient"]
