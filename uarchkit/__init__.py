"""Models of a TAGE branch predictor with a misprediction pattern cache and a hybrid L1D prefetcher."""

__version__ = "0.1.0"
__all__ = ["tage", "prefetch_tables", "prefetcher"]