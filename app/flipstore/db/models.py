from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Index, JSON, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


class FeatureRecord(Base):
    __tablename__ = "features"

    uid: Mapped[str] = mapped_column(String(100), primary_key=True)
    enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    group_name: Mapped[str | None] = mapped_column(String(100), nullable=True)
    strategy_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    strategy_params: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow, nullable=False
    )

    permissions = relationship(
        "FeaturePermission",
        back_populates="feature",
        cascade="all, delete-orphan",
        lazy="selectin",
    )


class FeaturePermission(Base):
    __tablename__ = "feature_permissions"

    feature_uid: Mapped[str] = mapped_column(
        String(100), ForeignKey("features.uid", ondelete="CASCADE"), primary_key=True
    )
    role_name: Mapped[str] = mapped_column(String(100), primary_key=True)

    feature = relationship("FeatureRecord", back_populates="permissions")


Index("ix_features_group_name", FeatureRecord.group_name)
