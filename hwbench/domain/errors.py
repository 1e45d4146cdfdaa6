class BenchmarkError(Exception):
    """Base class for errors that cross the benchmark engine boundary."""
    pass

class UnsupportedGpuError(BenchmarkError):
    """Raised when a run request's GPU vendor cannot be classified."""
    pass

class ConfigError(BenchmarkError):
    pass
