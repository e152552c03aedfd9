from sqlalchemy import Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from .database import Base

# Dates are ISO "YYYY-MM-DD" text and flags are 0/1 integers, which is what
# databases created by earlier releases already hold.


class Student(Base):
    __tablename__ = "students"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    first_name: Mapped[str | None] = mapped_column(String(120))
    last_name: Mapped[str | None] = mapped_column(String(120))
    phone: Mapped[str | None] = mapped_column(String(40))
    email: Mapped[str | None] = mapped_column(String(255))
    address: Mapped[str | None] = mapped_column(Text)
    age: Mapped[int | None] = mapped_column(Integer)
    program: Mapped[str | None] = mapped_column(String(120))
    join_date: Mapped[str | None] = mapped_column(String(10))
    renewal_date: Mapped[str | None] = mapped_column(String(10))
    status: Mapped[str | None] = mapped_column(String(20), server_default="active")
    photo: Mapped[str | None] = mapped_column(Text)
    notes: Mapped[str | None] = mapped_column(Text)
    parents_name: Mapped[str | None] = mapped_column(String(255))
    referral_source: Mapped[str | None] = mapped_column(String(120))
    created_at: Mapped[str | None] = mapped_column(String(32))


class Payment(Base):
    __tablename__ = "payments"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    student_id: Mapped[int | None] = mapped_column(ForeignKey("students.id", ondelete="SET NULL"))
    amount: Mapped[float] = mapped_column(Float, nullable=False, server_default="0")
    date: Mapped[str | None] = mapped_column(String(10))
    method: Mapped[str | None] = mapped_column(String(40))
    taxable: Mapped[int | None] = mapped_column(Integer, server_default="0")
    note: Mapped[str | None] = mapped_column(Text)
    receipt_no: Mapped[str | None] = mapped_column(String(60))
    created_at: Mapped[str | None] = mapped_column(String(32))


class Expense(Base):
    __tablename__ = "expenses"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    vendor: Mapped[str | None] = mapped_column(String(255))
    amount: Mapped[float] = mapped_column(Float, nullable=False, server_default="0")
    date: Mapped[str | None] = mapped_column(String(10))
    taxable: Mapped[int | None] = mapped_column(Integer, server_default="0")
    category: Mapped[str | None] = mapped_column(String(120))
    note: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[str | None] = mapped_column(String(32))


class Lead(Base):
    __tablename__ = "leads"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    name: Mapped[str | None] = mapped_column(String(255))
    phone: Mapped[str | None] = mapped_column(String(40))
    email: Mapped[str | None] = mapped_column(String(255))
    interested_program: Mapped[str | None] = mapped_column(String(120))
    source: Mapped[str | None] = mapped_column(String(120))
    follow_up_date: Mapped[str | None] = mapped_column(String(10))
    status: Mapped[str | None] = mapped_column(String(20), server_default="new")
    notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[str | None] = mapped_column(String(32))
    converted_at: Mapped[str | None] = mapped_column(String(32))
    converted_student_id: Mapped[int | None] = mapped_column(Integer)


class Attendance(Base):
    __tablename__ = "attendance"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    student_id: Mapped[int] = mapped_column(ForeignKey("students.id", ondelete="CASCADE"), nullable=False)
    date: Mapped[str | None] = mapped_column(String(10))
    present: Mapped[int | None] = mapped_column(Integer, server_default="0")


class AppliedMigration(Base):
    __tablename__ = "schema_migrations"

    name: Mapped[str] = mapped_column(String(120), primary_key=True)
    applied_at: Mapped[str] = mapped_column(String(32), nullable=False)


CANONICAL_TABLES = ("students", "payments", "expenses", "leads", "attendance")
