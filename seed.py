import logging

from sqlalchemy import select
from sqlalchemy.orm import Session

from database import session_scope
from models import Category, CategoryType

logger = logging.getLogger(__name__)

DEFAULT_CATEGORIES: list[tuple[str, CategoryType]] = [
    ("食費", CategoryType.expense),
    ("光熱費", CategoryType.expense),
    ("交通費", CategoryType.expense),
    ("娯楽費", CategoryType.expense),
    ("日用品", CategoryType.expense),
    ("衣類", CategoryType.expense),
    ("医療費", CategoryType.expense),
    ("その他", CategoryType.expense),
    ("給与", CategoryType.income),
    ("ボーナス", CategoryType.income),
    ("副業", CategoryType.income),
    ("その他", CategoryType.income),
]


def seed_categories(session: Session) -> int:
    """Insert any missing default categories. Returns how many were created."""
    existing = {
        (row.name, row.type)
        for row in session.execute(select(Category.name, Category.type))
    }
    created = 0
    for name, category_type in DEFAULT_CATEGORIES:
        if (name, category_type) in existing:
            continue
        session.add(Category(name=name, type=category_type))
        created += 1
    session.flush()
    return created


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    with session_scope() as session:
        created = seed_categories(session)
    logger.info(
        f"seed_categories: created={created} total_defaults={len(DEFAULT_CATEGORIES)}"
    )


if __name__ == "__main__":
    main()
