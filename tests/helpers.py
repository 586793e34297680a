from sqlalchemy import select
from sqlalchemy.orm import Session

from models import Category, CategoryType, User


def add_users(session: Session, *user_ids: str) -> None:
    for user_id in user_ids:
        session.add(User(id=user_id, name=user_id.title()))
    session.commit()


def category_id(session: Session, name: str, type: CategoryType) -> str:
    return session.scalar(
        select(Category.id).where(Category.name == name, Category.type == type)
    )
