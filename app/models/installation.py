"""Installation teams and installation task line items."""

from sqlalchemy import Column, String, DateTime, Text, Integer, JSON
from sqlalchemy.sql import func

from app.database import Base


class InstallationTeam(Base):
    """Field team that installs and removes billboard faces."""

    __tablename__ = "installation_teams"

    id = Column(Integer, primary_key=True, index=True)
    team_name = Column(String(255), nullable=False)
    sizes = Column(JSON, nullable=True)  # size codes the team handles
    cities = Column(JSON, nullable=True)  # empty or null = all cities

    created_at = Column(DateTime(timezone=True), server_default=func.now())

    def __repr__(self):
        return f"<InstallationTeam {self.id} {self.team_name}>"


class InstallationTaskItem(Base):
    """Billboard line of an installation task. Read for design copy-forward."""

    __tablename__ = "installation_task_items"

    id = Column(Integer, primary_key=True, index=True)
    task_id = Column(Integer, nullable=True, index=True)
    billboard_id = Column(Integer, nullable=False, index=True)
    status = Column(String(20), default="pending")
    design_face_a = Column(Text, nullable=True)
    design_face_b = Column(Text, nullable=True)
    installed_image_url = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=func.now(), index=True)
