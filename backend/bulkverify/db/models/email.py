"""Global email model."""
from sqlalchemy import Column, Integer, String
from bulkverify.db.base import Base


def strip_email_modifiers(email: str) -> str:
    """Canonical form of an address: trimmed, lower-cased, without a +tag.

    Periods are kept because not every mail provider ignores them.
    """
    email = (email or "").strip().lower()
    if "@" not in email:
        return email
    local, _, domain = email.rpartition("@")
    return f"{local.split('+', 1)[0]}@{domain}"


class EmailGlobal(Base):
    """Deduplicated email identity shared by every submission and mode."""

    __tablename__ = "emails_global"

    global_id = Column(Integer, primary_key=True, autoincrement=True)
    email = Column(String(320), nullable=False)
    email_stripped = Column(String(320), nullable=False, unique=True, index=True)

    def __repr__(self) -> str:
        return f"<EmailGlobal(global_id={self.global_id}, email_stripped='{self.email_stripped}')>"
