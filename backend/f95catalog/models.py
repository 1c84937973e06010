"""SQLAlchemy ORM models."""

from sqlalchemy import BigInteger, Column, Integer, String, Text
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class GameRow(Base):
    """Persisted game table, one row per tracked thread."""

    __tablename__ = "games"

    id = Column(Integer, primary_key=True, autoincrement=True)
    game_number = Column(Integer, unique=True, nullable=False, index=True)
    game_name = Column(String(300), nullable=False)
    version = Column(String(100), nullable=False, default="Unknown")
    developer = Column(String(200), nullable=False, default="Unknown")
    release_date = Column(String(100), nullable=True)
    original_url = Column(String(1000), nullable=False, default="", index=True)
    cover_image = Column(String(1000), nullable=True)
    description = Column(Text, nullable=False, default="")
    tags = Column(Text, nullable=False, default="[]")  # JSON list.
    total_size_gb = Column(String(20), nullable=False, default="0.00")
    total_size_bytes = Column(BigInteger, nullable=False, default=0)
    download_links = Column(Text, nullable=False, default="[]")  # JSON list of DownloadLink.
    individual_sizes = Column(Text, nullable=False, default="[]")  # JSON list of LinkSize.
    file_size = Column(String(100), nullable=True)
    extracted_date = Column(String(40), nullable=False)  # ISO-8601 UTC.
