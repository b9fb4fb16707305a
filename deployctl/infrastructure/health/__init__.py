from .http_prober import HttpProber

__all__ = ["HttpProber"]
