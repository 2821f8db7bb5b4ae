"""Database models."""
from .ping import ProbeSample
from .traceroute import TraceSample

__all__ = ["ProbeSample", "TraceSample"]
