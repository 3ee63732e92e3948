"""Skill catalogue and per-user skill registrations."""

import uuid

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String, UniqueConstraint, Uuid
from sqlalchemy.orm import relationship

from ..core.database import Base
from ..utils.datetime import utcnow


class Skill(Base):
    """A teachable subject."""

    __tablename__ = "skills"
    __table_args__ = (UniqueConstraint("name", name="skills_name_unique"),)

    skill_id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String, nullable=False)
    category = Column(String)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    registrations = relationship("UserSkill", back_populates="skill")


class UserSkill(Base):
    """Links a user to a skill they can teach and/or want to learn."""

    __tablename__ = "user_skills"
    __table_args__ = (UniqueConstraint("user_id", "skill_id", name="user_skills_unique"),)

    user_skill_id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id = Column(Uuid, ForeignKey("users.user_id", ondelete="CASCADE"), nullable=False)
    skill_id = Column(Uuid, ForeignKey("skills.skill_id", ondelete="CASCADE"), nullable=False)
    can_teach = Column(Boolean, nullable=False, default=False)
    can_learn = Column(Boolean, nullable=False, default=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    user = relationship("User", back_populates="skills")
    skill = relationship("Skill", back_populates="registrations")
