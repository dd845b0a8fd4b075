"""Removal task models."""

from sqlalchemy import Column, String, DateTime, Text, Integer, Date, JSON, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func

from app.database import Base


class RemovalTask(Base):
    """Unit of work assigning expired-contract billboards to a field team."""

    __tablename__ = "removal_tasks"

    id = Column(Integer, primary_key=True, index=True)
    contract_id = Column(String(50), nullable=True, index=True)  # first contract number
    contract_ids = Column(JSON, nullable=True)  # every contract number covered
    team_id = Column(Integer, ForeignKey("installation_teams.id"), nullable=True, index=True)
    status = Column(String(20), nullable=False, default="pending", index=True)  # pending, in_progress, completed, cancelled

    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())

    items = relationship("RemovalTaskItem", back_populates="task", lazy="selectin")

    def __repr__(self):
        return f"<RemovalTask {self.id} team={self.team_id} {self.status}>"

    @property
    def contract_numbers(self) -> list[str]:
        if self.contract_ids:
            return [str(c) for c in self.contract_ids]
        return [self.contract_id] if self.contract_id else []


class RemovalTaskItem(Base):
    """One billboard to take down as part of a removal task."""

    __tablename__ = "removal_task_items"

    id = Column(Integer, primary_key=True, index=True)
    task_id = Column(Integer, ForeignKey("removal_tasks.id"), nullable=False, index=True)
    billboard_id = Column(Integer, nullable=False, index=True)
    status = Column(String(20), nullable=False, default="pending")  # pending, completed

    # Completion
    completed_at = Column(DateTime(timezone=True), nullable=True)
    removal_date = Column(Date, nullable=True)
    notes = Column(Text, nullable=True)
    removed_image_url = Column(Text, nullable=True)

    # Copied from the latest installation of this billboard
    design_face_a = Column(Text, nullable=True)
    design_face_b = Column(Text, nullable=True)
    installed_image_url = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    task = relationship("RemovalTask", back_populates="items")
