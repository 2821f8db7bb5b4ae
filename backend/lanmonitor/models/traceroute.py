"""TraceSample model - raw traceroute captures."""
from sqlalchemy import BigInteger, Column, Index, Integer, String, Text

from ..database import Base


class TraceSample(Base):
    """Traceroute output for one target; hops stay embedded in `raw`."""

    __tablename__ = "traceroutes"
    __table_args__ = (
        Index("idx_tr_ts", "ts"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    ts = Column(BigInteger, nullable=False)  # epoch ms of the trace cycle
    target = Column(String, nullable=False)
    raw = Column(Text, nullable=True)
