"""
Seed script to populate the students table with demo fee accounts.

Usage:
    python -m schoolpay.db.seed_students --parent-id <uuid> [--session 2024/2025] [--term "First Term"]

Students are matched by (name, session, term); existing rows are left alone.
"""
import argparse
import asyncio
import uuid
from decimal import Decimal
from typing import List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from schoolpay.core.models import Student
from schoolpay.db.session import AsyncSessionLocal, Base, engine

# (name, class_name, total_fees)
DEMO_STUDENTS: List[Tuple[str, str, Decimal]] = [
    ("Adaeze Okafor", "JSS 1", Decimal("150000")),
    ("Chinedu Okafor", "JSS 3", Decimal("175000")),
    ("Tolu Adeyemi", "SS 2", Decimal("210000")),
    ("Ibrahim Musa", "Primary 5", Decimal("95000")),
]


async def seed_students(
    db: AsyncSession,
    parent_id: Optional[uuid.UUID],
    session: str,
    term: str,
) -> None:
    created = 0
    skipped = 0
    for name, class_name, total_fees in DEMO_STUDENTS:
        result = await db.execute(
            select(Student).where(Student.name == name, Student.session == session, Student.term == term)
        )
        if result.scalar_one_or_none():
            skipped += 1
            continue
        db.add(
            Student(
                name=name,
                class_name=class_name,
                session=session,
                term=term,
                parent_id=parent_id,
                total_fees=total_fees,
            )
        )
        created += 1
    await db.commit()

    print("=" * 60)
    print("Student Seeding Summary")
    print("=" * 60)
    print(f"Students created: {created}")
    print(f"Students skipped (already present): {skipped}")
    print(f"Session / term: {session} / {term}")
    print("=" * 60)


async def main(args: argparse.Namespace) -> None:
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    async with AsyncSessionLocal() as db:
        try:
            await seed_students(db, args.parent_id, args.session, args.term)
        except Exception as e:
            print(f"Error seeding students: {e}")
            await db.rollback()
            raise
    await engine.dispose()


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description="Seed demo student fee accounts")
    parser.add_argument("--parent-id", type=uuid.UUID, default=None, help="Parent user id to link the students to")
    parser.add_argument("--session", default="2024/2025")
    parser.add_argument("--term", default="First Term")
    asyncio.run(main(parser.parse_args()))
