"""ProbeSample model - one ping result per target per tick."""
from sqlalchemy import BigInteger, Boolean, Column, Float, Index, Integer, String, Text

from ..database import Base


class ProbeSample(Base):
    """Single ping outcome; immutable once stored."""

    __tablename__ = "pings"
    __table_args__ = (
        Index("idx_pings_ts", "ts"),
        Index("idx_pings_target", "target"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    ts = Column(BigInteger, nullable=False)  # epoch ms when the tick fired
    target = Column(String, nullable=False)
    alive = Column(Boolean, nullable=False)
    time_ms = Column(Float, nullable=True)  # NULL if no reply time was parsed
    ttl = Column(Integer, nullable=True)
    raw = Column(Text, nullable=True)  # full ping output, for diagnostics

    def __repr__(self) -> str:
        return f"<ProbeSample {self.target} ts={self.ts} alive={self.alive} time_ms={self.time_ms}>"
