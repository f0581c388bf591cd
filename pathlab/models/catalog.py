from sqlalchemy import ForeignKey, Integer, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from pathlab.database import Base


class TestCategory(Base):
    __tablename__ = "test_categories"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    category_code: Mapped[str | None] = mapped_column(String(50), nullable=True)
    name: Mapped[str] = mapped_column(String(100), unique=True, index=True, nullable=False)


class CategoryHead(Base):
    """Legacy billing category label, mapped to a TestCategory by name."""

    __tablename__ = "category_heads"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    category_name: Mapped[str] = mapped_column(String(100), nullable=False)


class ServiceHead(Base):
    __tablename__ = "service_heads"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    category_head_id: Mapped[int | None] = mapped_column(ForeignKey("category_heads.id"), nullable=True)
    test_name: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    price: Mapped[str | None] = mapped_column(String(20), nullable=True)

    category_head = relationship("CategoryHead")


class Unit(Base):
    __tablename__ = "units"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(50), nullable=False)


class TestDefinition(Base):
    __tablename__ = "test_definitions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), index=True, nullable=False)
    short_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    test_type: Mapped[str] = mapped_column(String(20), nullable=False, default="single")
    category_id: Mapped[int | None] = mapped_column(ForeignKey("test_categories.id"), nullable=True)
    service_head_id: Mapped[int | None] = mapped_column(ForeignKey("service_heads.id"), nullable=True)

    parameters = relationship(
        "TestParameter",
        back_populates="definition",
        order_by="TestParameter.order",
        cascade="all, delete-orphan",
    )


class TestParameter(Base):
    __tablename__ = "test_parameters"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    definition_id: Mapped[int] = mapped_column(ForeignKey("test_definitions.id", ondelete="CASCADE"), index=True)
    order: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    unit_id: Mapped[int | None] = mapped_column(ForeignKey("units.id"), nullable=True)

    definition = relationship("TestDefinition", back_populates="parameters")
