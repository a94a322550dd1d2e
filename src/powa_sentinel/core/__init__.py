from powa_sentinel.core.pipeline import AnalysisPipeline, request_id, utc_now

__all__ = ["AnalysisPipeline", "request_id", "utc_now"]
