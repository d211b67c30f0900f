"""Read-only project/user directory lookups used for authorization and fan-out"""

from typing import List

from sqlalchemy.exc import OperationalError
from sqlalchemy.orm import Session

from ..models import Project, ProjectMember, User
from .exceptions import NotFoundError, PermissionDeniedError, TransientLookupError


class Role:
    ENGINEER = "engineer"
    MANAGER = "manager"
    OWNER = "owner"
    PURCHASE_MANAGER = "purchase_manager"


def get_project(db: Session, project_id: int) -> Project:
    try:
        project = db.query(Project).filter(Project.id == project_id).first()
    except OperationalError as e:
        raise TransientLookupError(f"Project directory unavailable: {e.orig}") from e
    if not project:
        raise NotFoundError(f"Project {project_id} not found", code="PROJECT_NOT_FOUND")
    return project


def get_user(db: Session, user_id: int) -> User:
    user = db.query(User).filter(User.id == user_id).first()
    if not user:
        raise NotFoundError(f"User {user_id} not found")
    return user


def is_member(db: Session, project: Project, user: User) -> bool:
    if project.owner_id == user.id:
        return True
    return db.query(ProjectMember).filter(
        ProjectMember.project_id == project.id,
        ProjectMember.user_id == user.id
    ).first() is not None


def require_member(db: Session, project: Project, user: User, allow_owner_role: bool = True) -> None:
    """Owners may see any project; everyone else must be a member"""
    if allow_owner_role and user.role == Role.OWNER:
        return
    if not is_member(db, project, user):
        raise PermissionDeniedError("Access denied. You must be a member of this project.")


def require_role(user: User, *roles: str) -> None:
    if user.role not in roles:
        raise PermissionDeniedError(
            f"Access denied. Required roles: {', '.join(roles)}"
        )


def project_member_ids(db: Session, project_id: int, role: str | None = None) -> List[int]:
    query = db.query(User.id).join(
        ProjectMember, ProjectMember.user_id == User.id
    ).filter(
        ProjectMember.project_id == project_id,
        User.is_active == True
    )
    if role:
        query = query.filter(User.role == role)
    return [row.id for row in query.order_by(User.id.asc()).all()]


def project_manager_ids(db: Session, project_id: int) -> List[int]:
    return project_member_ids(db, project_id, role=Role.MANAGER)


def member_project_ids(db: Session, user: User) -> List[int]:
    rows = db.query(ProjectMember.project_id).filter(ProjectMember.user_id == user.id).all()
    owned = db.query(Project.id).filter(Project.owner_id == user.id).all()
    return sorted({r.project_id for r in rows} | {r.id for r in owned})
